import re

# Restricted or sensitive ad categories under Meta's advertising standards
POLICY_KEYWORDS = {
    "financial_claims": [
        "get rich", "guaranteed income", "guaranteed returns", "double your money", "passive income",
        "crypto", "forex", "investment opportunity", "make money fast", "risk free", "risk-free",
    ],
    "health_claims": [
        "weight loss", "lose weight", "miracle", "cure", "cures", "burn fat", "diet pill",
        "anti-aging", "before and after", "detox",
    ],
    "adult": ["adult content", "xxx", "escort", "dating hookup"],
    "weapons": ["firearm", "ammunition", "gun sale", "explosive"],
    "politics": [
        "election", "vote for", "voting", "senate", "congress", "president",
        "democrat", "republican", "parliament", "ballot",
    ],
}

def _normalize(text: str) -> str:
    return re.sub(r"\s+", " ", (text or "").strip().lower())

def _matches(text: str, keyword: str) -> bool:
    return re.search(rf"(?<![a-z]){re.escape(keyword)}(?![a-z])", text) is not None

def keyword_flags(text: str) -> dict:
    t = _normalize(text)
    flags = {}
    reasons = []
    for category, keywords in POLICY_KEYWORDS.items():
        hit = any(_matches(t, k) for k in keywords)
        flags[category] = hit
        if hit:
            reasons.append(f"{category}_keyword_match")

    return {**flags, "needs_review": bool(reasons), "reasons": reasons}
