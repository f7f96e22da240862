"""
Daily Check-In Backend - FastAPI Application

Places automated wellbeing check-in calls, runs the call conversation over
Twilio webhooks, scores the transcript for risk and escalates to a human
contact when warranted.

Webhook routes ALWAYS answer 200 with TwiML: any internal fault becomes a
bare <Hangup/> so Twilio never retries or holds the line.

Python 3.9 compatible.
"""

import logging
import os
from contextlib import asynccontextmanager
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv
from fastapi import BackgroundTasks, Depends, FastAPI, Form, Header, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response

# Load environment variables from .env before settings are read
env_paths = [
    Path(__file__).parent.parent / ".env",  # repository root
    Path.cwd() / ".env",  # current working directory
]
for env_path in env_paths:
    if env_path.exists():
        load_dotenv(env_path)
        break
else:
    load_dotenv()  # fallback to default behavior

from engine.turns import DialogueTurnContext

from .analysis_service import RiskAnalyzer, get_risk_analyzer
from .config import ConfigurationError, Settings, get_settings, mask_secret
from .dialogue_service import VOICE_PATH, DialogueService, get_dialogue_service
from .escalation import (
    AlertService,
    EscalationNotifier,
    get_alert_service,
    get_escalation_notifier,
)
from .llm import get_openai_client
from .models import (
    AlertResponse,
    AnalysisRequest,
    AnalysisResponse,
    CallStartRequest,
    CallStartResponse,
    CheckinResponse,
    DailyCheckinResponse,
)
from .store import CheckinSession, CheckinStore, get_checkin_store
from .twilio_service import (
    TwilioService,
    get_twilio_service,
    hangup_twiml,
    validate_phone_e164,
)

# Configure logging
logging.basicConfig(
    level=logging.DEBUG if os.getenv("DEBUG", "false").lower() == "true" else logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan - validate configuration and warm services."""
    settings = get_settings()

    logger.info("=" * 60)
    logger.info("Initializing Daily Check-In Backend")
    logger.info("=" * 60)

    logger.info(f"OPENAI_API_KEY present: {bool(settings.openai_api_key)} ({mask_secret(settings.openai_api_key)})")
    logger.info(f"OPENAI_MODEL: {settings.openai_model}")
    logger.info(f"WEBHOOK_BASE_URL: {settings.webhook_base_url}")

    # FAIL FAST if OPENAI_API_KEY is missing
    try:
        get_openai_client()
    except ConfigurationError as e:
        logger.error(str(e))
        raise

    store = get_checkin_store()
    logger.info(f"Checkin store ready ({len(store.list_contacts())} contacts)")

    twilio_service = get_twilio_service()
    if twilio_service.is_configured:
        logger.info("Twilio service initialized successfully")
    else:
        logger.warning("Twilio service NOT fully configured - call placement and alerts will fail")

    if not settings.alert_contact_number:
        logger.warning("ALERT_CONTACT_NUMBER not set - alerts rely on contact escalation numbers")

    get_dialogue_service()
    logger.info("=" * 60)

    yield

    logger.info("Shutting down Daily Check-In Backend")


app = FastAPI(
    title="Daily Check-In Backend",
    description="Automated wellbeing check-in calls with risk analysis and escalation",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _xml(content: str) -> Response:
    return Response(content=content, media_type="application/xml")


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "version": "1.0.0"}


# ============================================================
# Call placement
# ============================================================

def _place_checkin_call(
    twilio_service: TwilioService,
    store: CheckinStore,
    settings: Settings,
    phone_e164: str,
    contact_id: Optional[str] = None,
    conversation_set_name: Optional[str] = None,
) -> CheckinSession:
    """Place a call and create its check-in session."""
    webhook_url = settings.build_url(VOICE_PATH)
    call_id = twilio_service.place_call(phone_e164, webhook_url)
    return store.ensure_session(
        call_id,
        contact_id=contact_id,
        conversation_set_name=conversation_set_name,
    )


@app.post("/call/start", response_model=CallStartResponse)
async def call_start(
    request: CallStartRequest,
    twilio_service: TwilioService = Depends(get_twilio_service),
    store: CheckinStore = Depends(get_checkin_store),
    settings: Settings = Depends(get_settings),
) -> CallStartResponse:
    """
    Place a check-in call.

    Returns:
    - 400 if the phone number is not E.164 or the conversation set is unknown
    - 404 if contactId is unknown
    - 503 if Twilio is not configured
    """
    contact = None
    if request.contactId:
        contact = store.get_contact(request.contactId)
        if contact is None:
            raise HTTPException(status_code=404, detail="contact_not_found")

    phone = request.phoneE164 or (contact.number_to_call if contact else None) or settings.person_number
    if not phone:
        raise HTTPException(status_code=400, detail="missing_phone: no phoneE164, contact or PERSON_NUMBER")
    if not validate_phone_e164(phone):
        raise HTTPException(status_code=400, detail=f"invalid_phone_e164: {phone}")

    if request.conversationSetName and not store.has_conversation_set(request.conversationSetName):
        raise HTTPException(status_code=400, detail=f"unknown_conversation_set: {request.conversationSetName}")

    try:
        session = _place_checkin_call(
            twilio_service,
            store,
            settings,
            phone,
            contact_id=contact.id if contact else None,
            conversation_set_name=request.conversationSetName,
        )
    except ConfigurationError as e:
        logger.error(f"call_start: {e}")
        raise HTTPException(status_code=503, detail=f"Twilio not configured: {e}")
    except Exception as e:
        logger.error(f"call_start: Twilio call failed: {e}")
        raise HTTPException(status_code=502, detail=f"twilio_error: {e}")

    who = contact.name if contact else phone
    return CallStartResponse(
        success=True,
        callId=session.call_id,
        checkinId=session.id,
        message=f"Check-in call initiated to {who}",
    )


@app.get("/cron/daily-checkin", response_model=DailyCheckinResponse)
async def daily_checkin(
    authorization: Optional[str] = Header(None),
    twilio_service: TwilioService = Depends(get_twilio_service),
    store: CheckinStore = Depends(get_checkin_store),
    settings: Settings = Depends(get_settings),
) -> DailyCheckinResponse:
    """
    Scheduled daily trigger: one call per contact, or PERSON_NUMBER if
    the directory is empty. Requires Authorization: Bearer <CRON_SECRET>.
    """
    if not settings.cron_secret or authorization != f"Bearer {settings.cron_secret}":
        raise HTTPException(status_code=401, detail="Unauthorized")

    if not twilio_service.is_configured:
        raise HTTPException(status_code=503, detail="Twilio not configured")

    targets = [(c.number_to_call, c.id) for c in store.list_contacts()]
    if not targets:
        if not settings.person_number:
            raise HTTPException(status_code=500, detail="PERSON_NUMBER not configured")
        targets = [(settings.person_number, None)]

    call_ids: List[str] = []
    failures: List[str] = []
    for phone, contact_id in targets:
        try:
            session = _place_checkin_call(twilio_service, store, settings, phone, contact_id=contact_id)
            call_ids.append(session.call_id)
        except Exception as e:
            # One failed number must not stop the rest of the round
            logger.error(f"daily_checkin: call to {phone} failed: {e}")
            failures.append(phone)

    return DailyCheckinResponse(
        success=not failures,
        callIds=call_ids,
        failures=failures,
        message=f"Daily check-in initiated: {len(call_ids)} placed, {len(failures)} failed",
        timestamp=datetime.utcnow(),
    )


# ============================================================
# Check-in records
# ============================================================

@app.get("/checkins", response_model=List[CheckinResponse])
async def list_checkins(
    limit: int = Query(50, ge=1, le=500),
    store: CheckinStore = Depends(get_checkin_store),
) -> List[CheckinResponse]:
    """Most recent check-ins first."""
    return [s.to_response() for s in store.list_recent(limit)]


@app.get("/checkins/{call_id}", response_model=CheckinResponse)
async def get_checkin(
    call_id: str,
    store: CheckinStore = Depends(get_checkin_store),
) -> CheckinResponse:
    session = store.get_by_call_id(call_id)
    if session is None:
        raise HTTPException(status_code=404, detail="checkin_not_found")
    return session.to_response()


# ============================================================
# Twilio Webhooks
# ============================================================

@app.get("/call/voice")
async def call_voice_probe():
    """Allow GET so the webhook URL can be checked from a browser."""
    return {
        "status": "ok",
        "message": "Twilio webhook endpoint is accessible",
        "timestamp": datetime.utcnow().isoformat(),
    }


@app.post("/call/voice")
async def call_voice(
    background_tasks: BackgroundTasks,
    CallSid: str = Form(""),
    CallStatus: Optional[str] = Form(None),
    AnsweredBy: Optional[str] = Form(None),
    dialogue: DialogueService = Depends(get_dialogue_service),
    notifier: EscalationNotifier = Depends(get_escalation_notifier),
):
    """
    Twilio voice webhook - called when the call connects.

    Speaks the greeting and opens the first listening window.
    """
    logger.info(f"/call/voice: CallSid={CallSid}, status={CallStatus}, answeredBy={AnsweredBy}")

    if not CallSid:
        logger.error("/call/voice: missing CallSid")
        return _xml(hangup_twiml())

    try:
        outcome = await dialogue.handle_call_answered(CallSid, CallStatus, AnsweredBy)
    except Exception:
        logger.exception(f"/call/voice failed for call {CallSid}")
        return _xml(hangup_twiml())

    if outcome.escalate_checkin_id:
        background_tasks.add_task(notifier.notify, outcome.escalate_checkin_id)
    return _xml(outcome.twiml)


@app.post("/call/gather")
async def call_gather(
    request: Request,
    background_tasks: BackgroundTasks,
    CallSid: str = Form(""),
    SpeechResult: Optional[str] = Form(None),
    UnstableSpeechResult: Optional[str] = Form(None),
    dialogue: DialogueService = Depends(get_dialogue_service),
    notifier: EscalationNotifier = Depends(get_escalation_notifier),
):
    """
    Twilio gather webhook - one call per listening window.

    questionIndex, chunkIndex and partial arrive as query parameters on the
    callback URL; the transcript lives in the check-in session.
    """
    try:
        context = DialogueTurnContext.from_query(request.query_params, dialogue.policy)
        logger.info(
            f"/call/gather: CallSid={CallSid}, q={context.question_index}, "
            f"chunk={context.chunk_index}, partial={context.is_partial}, "
            f"speech='{(SpeechResult or '')[:50]}'"
        )
        outcome = await dialogue.handle_speech_turn(CallSid, context, SpeechResult, UnstableSpeechResult)
    except Exception:
        logger.exception(f"/call/gather failed for call {CallSid}")
        return _xml(hangup_twiml())

    if outcome.escalate_checkin_id:
        background_tasks.add_task(notifier.notify, outcome.escalate_checkin_id)
    return _xml(outcome.twiml)


# ============================================================
# Alerts and analysis
# ============================================================

@app.get("/alert", response_model=AlertResponse)
async def send_alert(
    checkinId: Optional[str] = Query(None),
    store: CheckinStore = Depends(get_checkin_store),
    alerts: AlertService = Depends(get_alert_service),
) -> AlertResponse:
    """Send the escalation SMS for a check-in."""
    if not checkinId:
        raise HTTPException(status_code=400, detail="checkinId parameter required")

    session = store.get(checkinId)
    if session is None:
        raise HTTPException(status_code=404, detail="Checkin not found")

    try:
        recipient = alerts.send_alert(session)
    except ConfigurationError as e:
        logger.error(f"send_alert: {e}")
        raise HTTPException(status_code=503, detail=str(e))
    except Exception as e:
        logger.error(f"send_alert failed for checkin {checkinId}: {e}")
        raise HTTPException(status_code=502, detail=f"Failed to send alert: {e}")

    return AlertResponse(success=True, message="Alert sent successfully", recipient=recipient)


@app.post("/analysis", response_model=AnalysisResponse)
async def analyze_transcript(
    request: AnalysisRequest,
    analyzer: RiskAnalyzer = Depends(get_risk_analyzer),
) -> AnalysisResponse:
    """Run risk analysis on an arbitrary transcript."""
    analysis = await analyzer.analyze(request.transcript)
    return AnalysisResponse(success=True, analysis=analysis)


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", "8000"))
    uvicorn.run(app, host="0.0.0.0", port=port)
