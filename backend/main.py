# Backend main entry point - patient intake API
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field
from typing import Literal, Optional, List, Dict

from config import Settings, load_settings, configure_logging, is_demo_mode
from identity import FirebaseIdentityProvider, InMemoryIdentityProvider, bootstrap_identity
from store import FirestoreDocumentStore, InMemoryDocumentStore, patients_collection_path
from logic import IntakeController, IntakeRegistry
from models import DOB_PATTERN, Submitted, derive_login_id, preview_login_id

settings = load_settings()
configure_logging(settings.log_level)


def build_backends(settings: Settings):
    """Identity provider and document store for these settings (Firebase or in-memory)"""
    if settings.uses_firebase:
        identity = FirebaseIdentityProvider(settings.firebase_config["apiKey"])
        store = FirestoreDocumentStore(
            settings.firebase_config["projectId"],
            token_provider=identity.get_id_token,
        )
    else:
        identity = InMemoryIdentityProvider()
        store = InMemoryDocumentStore()
    return identity, store


def new_controller() -> IntakeController:
    """A fresh form for one client, sharing the process-wide session and store"""
    return IntakeController(identity=identity, store=store, app_id=settings.app_id)


identity, store = build_backends(settings)
registry = IntakeRegistry(new_controller, idle_seconds=settings.intake_idle_seconds)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Sign-in talks to the identity provider, so it waits for startup rather than import
    bootstrap_identity(identity, settings.initial_auth_token)
    yield
    registry.clear()


app = FastAPI(title="Homeo Intake API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Request/Response models
class IntakeFormBody(BaseModel):
    name: str = ""
    dob: str = ""
    gender: str = ""
    symptoms: str = ""


class IntakeFormUpdate(BaseModel):
    name: Optional[str] = None
    dob: Optional[str] = Field(default=None, pattern=DOB_PATTERN)
    gender: Optional[Literal["", "Male", "Female"]] = None
    symptoms: Optional[str] = None


class SubmissionResultBody(BaseModel):
    loginId: str
    caseNo: str


class IntakeView(BaseModel):
    intakeId: str
    state: str
    loading: bool
    sessionActive: bool
    canSubmit: bool
    form: Optional[IntakeFormBody] = None
    loginIdPreview: Optional[str] = None
    result: Optional[SubmissionResultBody] = None


def render_view(intake_id: str, ctrl: IntakeController) -> IntakeView:
    """What the form shell shows for the controller's current state"""
    state = ctrl.state
    view = IntakeView(
        intakeId=intake_id,
        state=state.kind,
        loading=state.kind == "submitting",
        sessionActive=ctrl.session_active,
        canSubmit=ctrl.can_submit,
    )
    if isinstance(state, Submitted):
        view.result = SubmissionResultBody(loginId=state.result.loginId, caseNo=state.result.caseNo)
    else:
        form = state.form
        view.form = IntakeFormBody(name=form.name, dob=form.dob, gender=form.gender, symptoms=form.symptoms)
        view.loginIdPreview = preview_login_id(form)
    return view


def get_controller(intake_id: str) -> IntakeController:
    ctrl = registry.get(intake_id)
    if ctrl is None:
        raise HTTPException(status_code=404, detail="Intake form not found")
    return ctrl


@app.get("/")
def read_root():
    return {"message": "Homeo Intake API"}


@app.get("/health")
def health_check():
    return {"status": "healthy"}


@app.get("/session")
def get_session():
    """Whether an identity session exists. Submitting is disabled until it does."""
    return {"active": identity.current_user is not None}


@app.get("/login-id")
def get_login_id(name: str = "", dob: str = Query(default="", pattern=DOB_PATTERN)):
    """Derive a login ID without touching any form"""
    return {"loginId": derive_login_id(name, dob)}


@app.post("/intakes", response_model=IntakeView, status_code=201)
def create_intake():
    """Open an empty form. Each client works on its own form id."""
    intake_id, ctrl = registry.create()
    return render_view(intake_id, ctrl)


@app.get("/intakes/{intake_id}", response_model=IntakeView)
def get_intake(intake_id: str):
    return render_view(intake_id, get_controller(intake_id))


@app.patch("/intakes/{intake_id}/form", response_model=IntakeView)
def update_intake_form(intake_id: str, update: IntakeFormUpdate):
    """Apply edited fields. Ignored while a submission is in flight or confirmed."""
    ctrl = get_controller(intake_id)
    ctrl.update_form(**update.model_dump(exclude_none=True))
    return render_view(intake_id, ctrl)


@app.post("/intakes/{intake_id}/submit", response_model=IntakeView)
def submit_intake(intake_id: str):
    """
    Submit the form. A blocked or failed submission leaves the form as it was;
    the response is then simply the editing view again.
    """
    ctrl = get_controller(intake_id)
    ctrl.submit()
    return render_view(intake_id, ctrl)


@app.post("/intakes/{intake_id}/reset", response_model=IntakeView)
def reset_intake(intake_id: str):
    """New Report: clear the confirmation and start with an empty form"""
    ctrl = get_controller(intake_id)
    ctrl.reset()
    return render_view(intake_id, ctrl)


@app.delete("/intakes/{intake_id}", status_code=204)
def close_intake(intake_id: str):
    """Forget a form the client is done with"""
    if not registry.discard(intake_id):
        raise HTTPException(status_code=404, detail="Intake form not found")


@app.get("/demo/status")
def demo_status():
    """Returns whether demo mode is enabled. Only for frontend visibility gate."""
    return {"demoMode": is_demo_mode()}


@app.get("/demo/records", response_model=List[Dict[str, str]])
def demo_records():
    """Records written to the in-memory store. Only available when DEMO_MODE=true."""
    if not is_demo_mode() or not isinstance(store, InMemoryDocumentStore):
        raise HTTPException(status_code=404, detail="Demo records not available")
    return store.documents(patients_collection_path(settings.app_id))


@app.post("/demo/reset")
def demo_reset():
    """
    Reset prototype to baseline. Only available when DEMO_MODE=true.
    Drops every open form and any in-memory records.
    """
    if not is_demo_mode():
        raise HTTPException(status_code=404, detail="Demo reset not available")
    registry.clear()
    if isinstance(store, InMemoryDocumentStore):
        store.clear()
    return {"status": "ok"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
