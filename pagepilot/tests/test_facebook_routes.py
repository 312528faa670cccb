from datetime import date
from unittest.mock import MagicMock, patch

from pagepilot.models import AdMetric, FacebookAdAccount, FacebookPage, ScheduledBoost, User
from pagepilot.security.auth import get_password_hash
from pagepilot.services import marketing
from pagepilot.services.facebook_graph import FacebookAPIError

CALLBACK = "/api/facebook/callback"

def graph_for_callback(ad_accounts=None, ad_error=None):
    graph = MagicMock()
    graph.get_me.return_value = {"id": "fb-user-1", "name": "Sam"}
    graph.get_pages.return_value = [{
        "id": "1234567890123", "name": "Corner Cafe", "access_token": "fresh-page-token",
        "category": "Cafe", "follower_count": 120,
    }]
    if ad_error:
        graph.get_ad_accounts.side_effect = ad_error
    else:
        graph.get_ad_accounts.return_value = ad_accounts or []
    return graph

def run_callback(client, headers, graph, state="state-1", cookie="state-1"):
    if cookie:
        headers = {**headers, "Cookie": f"fb_oauth_state={cookie}"}
    with patch("pagepilot.routes.facebook.exchange_code_for_token", return_value={"access_token": "short"}) as exchange, \
         patch("pagepilot.routes.facebook.get_long_lived_token", return_value={"access_token": "long-lived"}), \
         patch("pagepilot.routes.facebook.GraphClient", return_value=graph):
        params = {"code": "auth-code"}
        if state:
            params["state"] = state
        res = client.get(CALLBACK, params=params, headers=headers, follow_redirects=False)
    return res, exchange

def test_callback_stores_pages_and_ad_accounts(client, auth_headers, db, user, page):
    graph = graph_for_callback([
        {"id": "act_42", "name": "Main", "currency": "EUR", "account_status": 1},
        {"id": "77", "name": "Disabled", "currency": "USD", "account_status": 2},
    ])
    res, _ = run_callback(client, auth_headers, graph)

    assert res.status_code == 307
    assert res.headers["location"] == "/dashboard"
    db.expire_all()
    accounts = db.query(FacebookAdAccount).order_by(FacebookAdAccount.id).all()
    assert [(a.ad_account_id, a.currency, a.is_active) for a in accounts] == [
        ("act_42", "EUR", True),
        ("act_77", "USD", False),
    ]
    assert all(a.access_token == "long-lived" and a.user_id == user.id for a in accounts)
    assert db.get(FacebookPage, page.id).access_token == "fresh-page-token"
    assert db.get(User, user.id).facebook_user_id == "fb-user-1"

def test_callback_refreshes_existing_ad_account(client, auth_headers, db, user):
    db.add(FacebookAdAccount(user_id=user.id, ad_account_id="act_42", name="Old name", access_token="old"))
    db.commit()
    run_callback(client, auth_headers, graph_for_callback([{"id": "act_42", "name": "Main", "account_status": 1}]))

    db.expire_all()
    account = db.query(FacebookAdAccount).one()
    assert account.name == "Main"
    assert account.access_token == "long-lived"

def test_callback_connects_pages_without_ads_permission(client, auth_headers, db, user):
    graph = graph_for_callback(ad_error=FacebookAPIError("(#200) Requires ads_read permission", status_code=403))
    res, _ = run_callback(client, auth_headers, graph)

    assert res.status_code == 307
    assert db.query(FacebookAdAccount).count() == 0
    assert db.query(FacebookPage).filter(FacebookPage.user_id == user.id).count() == 1

def test_callback_requires_state_cookie(client, auth_headers):
    res, exchange = run_callback(client, auth_headers, graph_for_callback(), cookie=None)
    assert res.status_code == 400
    assert res.json()["detail"] == "OAuth state mismatch"
    exchange.assert_not_called()

def test_callback_rejects_mismatched_or_missing_state(client, auth_headers):
    res, exchange = run_callback(client, auth_headers, graph_for_callback(), state="forged")
    assert res.status_code == 400
    res, _ = run_callback(client, auth_headers, graph_for_callback(), state=None)
    assert res.status_code == 400
    exchange.assert_not_called()

def test_connect_and_list_ad_accounts(client, auth_headers, db):
    graph = MagicMock()
    graph.get.return_value = {"id": "act_42", "name": "Main", "currency": "USD", "account_status": 1}
    with patch("pagepilot.services.marketing._marketing_client", return_value=graph) as factory:
        res = client.post("/api/ads/accounts", headers=auth_headers,
                          json={"ad_account_id": "42", "access_token": "acct-token"})
        again = client.post("/api/ads/accounts", headers=auth_headers,
                            json={"ad_account_id": "act_42", "access_token": "acct-token"})

    assert res.status_code == 201
    assert res.json()["ad_account_id"] == "act_42"
    assert res.json()["is_active"] is True
    assert again.json()["id"] == res.json()["id"]
    factory.assert_called_with("acct-token")
    graph.get.assert_called_with("act_42", {"fields": marketing.AD_ACCOUNT_FIELDS})

    listed = client.get("/api/ads/accounts", headers=auth_headers).json()
    assert [a["ad_account_id"] for a in listed] == ["act_42"]
    assert db.query(FacebookAdAccount).one().access_token == "acct-token"

def test_connect_ad_account_graph_error(client, auth_headers, db):
    graph = MagicMock()
    graph.get.side_effect = FacebookAPIError("Unsupported get request.", status_code=400, code=100)
    with patch("pagepilot.services.marketing._marketing_client", return_value=graph):
        res = client.post("/api/ads/accounts", headers=auth_headers,
                          json={"ad_account_id": "999", "access_token": "t"})
    assert res.status_code == 502
    assert db.query(FacebookAdAccount).count() == 0

def test_ad_accounts_are_listed_per_user(client, auth_headers, db):
    other = User(email="other@example.com", password_hash=get_password_hash("x" * 10))
    db.add(other)
    db.commit()
    db.add(FacebookAdAccount(user_id=other.id, ad_account_id="act_9", name="Theirs"))
    db.commit()
    assert client.get("/api/ads/accounts", headers=auth_headers).json() == []

def test_campaigns_of_other_users_are_hidden(client, auth_headers, db):
    other = User(email="other@example.com", password_hash=get_password_hash("x" * 10))
    db.add(other)
    db.commit()
    account = FacebookAdAccount(user_id=other.id, ad_account_id="act_9", name="Theirs", access_token="their-token")
    db.add(account)
    db.commit()
    db.add(AdMetric(ad_account_id=account.id, campaign_id="camp-theirs", date=date(2026, 3, 1), spend=10))
    db.add(ScheduledBoost(user_id=other.id, post_id="1_2", date=date(2026, 3, 1), campaign_id="camp-boosted"))
    db.commit()

    with patch("pagepilot.services.marketing.set_campaign_status") as set_status, \
         patch("pagepilot.services.marketing.get_campaign_status") as get_status:
        for campaign_id in ("camp-theirs", "camp-boosted"):
            assert client.get(f"/api/facebook/campaigns/{campaign_id}", headers=auth_headers).status_code == 404
            assert client.post(f"/api/facebook/campaigns/{campaign_id}/activate", headers=auth_headers).status_code == 404
            assert client.post(f"/api/facebook/campaigns/{campaign_id}/pause", headers=auth_headers).status_code == 404
    set_status.assert_not_called()
    get_status.assert_not_called()

def test_owner_can_pause_boosted_campaign(client, auth_headers, db, user, page):
    boosted = {"campaign_id": "camp-mine", "adset_id": "as-1", "ad_id": "ad-1", "total_budget": 45.0}
    with patch("pagepilot.services.marketing.boost_post", return_value=boosted) as boost:
        res = client.post("/api/facebook/boost-post", headers=auth_headers,
                          json={"post_id": "1234567890123_55", "daily_budget": 15})
    assert res.status_code == 200
    assert boost.call_args.kwargs["page_id"] == page.page_id

    recorded = db.query(ScheduledBoost).one()
    assert (recorded.campaign_id, recorded.status, recorded.budget) == ("camp-mine", "active", 15)

    with patch("pagepilot.services.marketing.set_campaign_status", return_value=True) as set_status:
        res = client.post("/api/facebook/campaigns/camp-mine/pause", headers=auth_headers)
    assert res.json() == {"success": True, "status": "PAUSED"}
    set_status.assert_called_once_with("camp-mine", "PAUSED", access_token=None)

def test_synced_campaign_uses_its_account_token(client, auth_headers, db, user):
    account = FacebookAdAccount(user_id=user.id, ad_account_id="act_1", name="Mine", access_token="mine-token")
    db.add(account)
    db.commit()
    db.add(AdMetric(ad_account_id=account.id, campaign_id="camp-synced", date=date(2026, 3, 1)))
    db.commit()

    with patch("pagepilot.services.marketing.get_campaign_status", return_value={"status": "ACTIVE"}) as get_status:
        res = client.get("/api/facebook/campaigns/camp-synced", headers=auth_headers)
    assert res.json() == {"status": "ACTIVE"}
    get_status.assert_called_once_with("camp-synced", access_token="mine-token")
