from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from pagepilot.db import get_db
from pagepilot.logging_setup import log_event
from pagepilot.models import User, CustomerInteraction, Employee, AISuggestionFeedback
from pagepilot.config import settings
from pagepilot.schemas import InteractionOut, RespondIn, SuggestionFeedbackIn, EmployeeCreate, EmployeeOut
from pagepilot.security.auth import require_user
from pagepilot.security.rbac import get_owned_page
from pagepilot.services.customer_service import record_response, suggest_reply
from pagepilot.services.facebook_graph import FacebookAPIError, page_client
from pagepilot.services.rate_limit import ai_limiter
from pagepilot.services.sentiment import emotional_insights

router = APIRouter(prefix="/api/customer-service", tags=["customer-service"])

def _owned_interaction(db: Session, user: User, interaction_id: int) -> CustomerInteraction:
    interaction = db.get(CustomerInteraction, interaction_id)
    if not interaction:
        raise HTTPException(status_code=404, detail="Interaction not found")
    get_owned_page(db, user, interaction.page_id)
    return interaction

@router.get("/interactions/{page_ref}", response_model=list[InteractionOut])
def list_interactions(
    page_ref: str,
    status: str | None = Query(None, pattern="^(pending|responded|escalated)$"),
    limit: int = Query(50, ge=1, le=200),
    user: User = Depends(require_user),
    db: Session = Depends(get_db),
):
    page = get_owned_page(db, user, page_ref)
    q = db.query(CustomerInteraction).filter(CustomerInteraction.page_id == page.id)
    if status:
        q = q.filter(CustomerInteraction.status == status)
    return q.order_by(CustomerInteraction.id.desc()).limit(limit).all()

@router.post("/respond/{interaction_id}", response_model=InteractionOut)
def respond(interaction_id: int, payload: RespondIn, user: User = Depends(require_user), db: Session = Depends(get_db)):
    interaction = _owned_interaction(db, user, interaction_id)

    employee = None
    if payload.employee_id:
        employee = db.get(Employee, payload.employee_id)
        if not employee or employee.user_id != user.id:
            raise HTTPException(status_code=404, detail="Employee not found")

    if payload.send_to_customer and interaction.source in ("messenger", "postback"):
        try:
            page_client(interaction.page).send_message(interaction.customer_id, payload.response)
        except FacebookAPIError as e:
            raise HTTPException(status_code=502, detail=f"Failed to deliver message: {e.message}")

    return record_response(db, interaction, payload.response, employee=employee, response_time=payload.response_time)

@router.post("/ai-response/{interaction_id}", dependencies=[Depends(ai_limiter)])
def ai_response(interaction_id: int, user: User = Depends(require_user), db: Session = Depends(get_db)):
    interaction = _owned_interaction(db, user, interaction_id)
    return suggest_reply(db, interaction)

@router.post("/ai-response/{interaction_id}/feedback")
def ai_feedback(interaction_id: int, payload: SuggestionFeedbackIn,
                user: User = Depends(require_user), db: Session = Depends(get_db)):
    interaction = _owned_interaction(db, user, interaction_id)
    db.add(AISuggestionFeedback(
        interaction_id=interaction.id,
        suggestion=payload.suggestion,
        feedback=payload.feedback,
        notes=payload.notes,
        reviewed_by=str(user.id),
        platform_context="facebook",
        model_version=settings.openai_model,
        response_time_ms=payload.response_time_ms,
    ))
    interaction.ai_feedback_score = 1 if payload.feedback else 0
    interaction.ai_feedback_notes = payload.notes
    db.commit()
    log_event("ai_feedback_recorded", interaction_id=interaction.id, positive=payload.feedback)
    return {"success": True}

@router.get("/sentiment/{page_ref}")
def sentiment_insights(page_ref: str, hours: int = Query(24, ge=1, le=168),
                       user: User = Depends(require_user), db: Session = Depends(get_db)):
    return emotional_insights(db, get_owned_page(db, user, page_ref), hours=hours)

@router.get("/employees", response_model=list[EmployeeOut])
def list_employees(user: User = Depends(require_user), db: Session = Depends(get_db)):
    return db.query(Employee).filter(Employee.user_id == user.id).order_by(Employee.name.asc()).all()

@router.post("/employees", response_model=EmployeeOut, status_code=201)
def create_employee(payload: EmployeeCreate, user: User = Depends(require_user), db: Session = Depends(get_db)):
    exists = db.query(Employee).filter(Employee.user_id == user.id, Employee.email == payload.email).first()
    if exists:
        raise HTTPException(status_code=409, detail="An employee with this email already exists")
    employee = Employee(user_id=user.id, **payload.model_dump())
    db.add(employee)
    db.commit()
    return employee
