# Business logic - intake form state machine and record construction
from __future__ import annotations

import logging
import time
import uuid
from datetime import datetime, timezone
from threading import Lock
from typing import Callable, Dict, Optional, Tuple

from errors import StoreWriteError
from models import (
    Editing,
    IntakeForm,
    IntakeState,
    PatientRecord,
    SubmissionResult,
    Submitted,
    Submitting,
    derive_login_id,
    iso_timestamp,
    validate_field,
)
from store import patients_collection_path

logger = logging.getLogger(__name__)

DEFAULT_IDLE_SECONDS = 30 * 60


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def build_patient_record(form: IntakeForm, moment: datetime) -> PatientRecord:
    """Copy the form verbatim and stamp it. caseNo and timestamp are the same instant."""
    submitted_at = iso_timestamp(moment)
    return PatientRecord(
        name=form.name,
        dob=form.dob,
        gender=form.gender,
        symptoms=form.symptoms,
        loginId=derive_login_id(form.name, form.dob),
        caseNo=submitted_at,
        timestamp=submitted_at,
    )


class IntakeController:
    """
    Owns one intake form: Editing -> Submitting -> Submitted, and back to Editing on reset.

    Collaborators are injected:
    - identity: anything with on_auth_state_changed(callback) -> unsubscribe
    - store: anything with add_document(collection_path, document) -> id
    Only session presence is taken from the identity provider.
    """

    def __init__(self, identity, store, app_id: str, clock: Optional[Callable[[], datetime]] = None):
        self._store = store
        self._collection_path = patients_collection_path(app_id)
        self._clock = clock or utc_now
        self._lock = Lock()
        self._state: IntakeState = Editing()
        self._session_active = False
        self._unsubscribe = identity.on_auth_state_changed(self._on_auth_state_changed)

    def _on_auth_state_changed(self, user) -> None:
        self._session_active = user is not None

    @property
    def state(self) -> IntakeState:
        return self._state

    @property
    def session_active(self) -> bool:
        return self._session_active

    @property
    def collection_path(self):
        return self._collection_path

    @property
    def can_submit(self) -> bool:
        state = self._state
        return isinstance(state, Editing) and self._session_active and state.form.is_complete()

    def update_field(self, field_name: str, value: str) -> bool:
        """Edit one field. Ignored unless the form is being edited."""
        return self.update_form(**{field_name: value})

    def update_form(self, **values: str) -> bool:
        """Edit several fields at once; nothing changes if any field or value is rejected."""
        for field_name, value in values.items():
            validate_field(field_name, value)
        with self._lock:
            if not isinstance(self._state, Editing):
                return False
            for field_name, value in values.items():
                self._state.form.update(field_name, value)
        return True

    def submit(self) -> bool:
        """
        Write one patient record. Returns True when the record was stored.
        Blocked (no session, incomplete form, not editing) -> no write, no transition.
        Store failure -> logged, back to Editing with the form intact. No retry.
        """
        with self._lock:
            state = self._state
            if not isinstance(state, Editing):
                logger.debug("Submit ignored in state %s", state.kind)
                return False
            if not self._session_active:
                logger.debug("Submit ignored: no active session")
                return False
            if not state.form.is_complete():
                logger.debug("Submit ignored: form incomplete")
                return False
            form = state.form
            record = build_patient_record(form, self._clock())
            self._state = Submitting(form=form)

        try:
            self._store.add_document(self._collection_path, record.to_document())
        except StoreWriteError:
            logger.exception("Failed to store intake record %s", record.caseNo)
            with self._lock:
                self._state = Editing(form=form)
            return False

        with self._lock:
            self._state = Submitted(result=SubmissionResult(loginId=record.loginId, caseNo=record.caseNo))
        logger.info("Intake submitted: loginId=%s caseNo=%s", record.loginId, record.caseNo)
        return True

    def reset(self) -> bool:
        """New Report: clear the confirmation and start over with an empty form."""
        with self._lock:
            if not isinstance(self._state, Submitted):
                return False
            self._state = Editing(form=IntakeForm())
        return True

    def close(self) -> None:
        self._unsubscribe()


class IntakeRegistry:
    """
    One IntakeController per client form, keyed by an opaque id.
    Forms untouched for idle_seconds are closed and forgotten the next time a form is created.
    """

    def __init__(
        self,
        factory: Callable[[], IntakeController],
        idle_seconds: float = DEFAULT_IDLE_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._factory = factory
        self._idle_seconds = idle_seconds
        self._clock = clock
        self._lock = Lock()
        self._forms: Dict[str, Tuple[IntakeController, float]] = {}

    def __len__(self) -> int:
        return len(self._forms)

    def create(self) -> Tuple[str, IntakeController]:
        self.expire_idle()
        intake_id = uuid.uuid4().hex
        ctrl = self._factory()
        with self._lock:
            self._forms[intake_id] = (ctrl, self._clock())
        return intake_id, ctrl

    def get(self, intake_id: str) -> Optional[IntakeController]:
        with self._lock:
            entry = self._forms.get(intake_id)
            if entry is None:
                return None
            ctrl = entry[0]
            self._forms[intake_id] = (ctrl, self._clock())
        return ctrl

    def discard(self, intake_id: str) -> bool:
        with self._lock:
            entry = self._forms.pop(intake_id, None)
        if entry is None:
            return False
        entry[0].close()
        return True

    def expire_idle(self) -> int:
        cutoff = self._clock() - self._idle_seconds
        with self._lock:
            stale = [key for key, (_, seen) in self._forms.items() if seen < cutoff]
            expired = [self._forms.pop(key)[0] for key in stale]
        for ctrl in expired:
            ctrl.close()
        if expired:
            logger.info("Expired %d idle intake form(s)", len(expired))
        return len(expired)

    def clear(self) -> None:
        with self._lock:
            controllers = [ctrl for ctrl, _ in self._forms.values()]
            self._forms.clear()
        for ctrl in controllers:
            ctrl.close()
