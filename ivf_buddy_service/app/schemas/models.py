from datetime import date, datetime
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator
from pydantic.alias_generators import to_camel

from app.utils.local_time import is_valid_hhmm

ProtocolStatus = Literal["DRAFT", "ACTIVE"]
ProtocolSource = Literal["UPLOAD", "INTAKE"]
TimeOfDay = Literal["morning", "afternoon", "evening", "bedtime"]
TaskKind = Literal["REMINDER", "CHECKIN", "APPOINTMENT", "CRITICAL", "INFO"]
TaskStatus = Literal["PENDING", "SENT", "DONE"]
MessageSender = Literal["SYSTEM", "USER", "BUDDY"]
MessageType = Literal["REMINDER", "CHECKIN", "APPOINTMENT", "INFO", "MESSAGE"]
CheckInSource = Literal["APP", "SMS"]

AppointmentType = Literal[
    "BLOODWORK", "ULTRASOUND", "MONITORING", "TRIGGER",
    "RETRIEVAL", "TRANSFER", "CONSULTATION", "OTHER",
]
MilestoneType = Literal[
    "CYCLE_START", "STIM_START", "TRIGGER", "RETRIEVAL", "TRANSFER", "PREG_TEST", "OTHER",
]

SAFETY_NOTE = (
    "Not medical advice. IVF Buddy organizes the protocol your clinic gave you. "
    "Always follow your clinic's instructions."
)


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class QuietHours(CamelModel):
    start: str
    end: str

    @field_validator("start", "end")
    @classmethod
    def _hhmm(cls, v: str) -> str:
        if not is_valid_hhmm(v):
            raise ValueError("quiet hours must be HH:MM (24h)")
        return v


# ---------------------------
# Users / cycles
# ---------------------------

class User(CamelModel):
    id: str
    timezone: str = "America/Los_Angeles"
    quiet_hours: Optional[QuietHours] = None
    phone_e164: Optional[str] = None
    sms_consent: bool = False
    daily_msg_count: int = 0
    last_msg_at: Optional[datetime] = None


class Cycle(CamelModel):
    id: str
    user_id: str
    start_date: Optional[date] = None


class PushSubscription(CamelModel):
    id: str
    user_id: str
    endpoint: str
    p256dh: str
    auth: str


# ---------------------------
# Protocol
# ---------------------------

class Medication(CamelModel):
    id: str
    protocol_plan_id: str
    name: str
    dosage_amount: Optional[float] = None
    dosage_unit: Optional[str] = None
    dosage: Optional[str] = None
    frequency: str = "once_daily"
    route: Optional[str] = None
    start_day_offset: int = Field(..., ge=0)
    duration_days: int = Field(..., ge=1)
    time_of_day: Optional[TimeOfDay] = None
    exact_time: Optional[str] = None
    instructions: Optional[str] = None

    @property
    def end_day_offset(self) -> int:
        return self.start_day_offset + self.duration_days - 1

    def active_on(self, day_index: int) -> bool:
        return self.start_day_offset <= day_index <= self.end_day_offset

    def dosage_text(self) -> Optional[str]:
        if self.dosage_amount is not None and self.dosage_unit:
            return f"{self.dosage_amount:g} {self.dosage_unit}"
        return self.dosage or None

    def label(self) -> str:
        dosage = self.dosage_text()
        return f"{self.name} {dosage}" if dosage else self.name


class Appointment(CamelModel):
    id: str
    protocol_plan_id: str
    type: AppointmentType
    day_offset: int = Field(..., ge=0)
    exact_time: Optional[str] = None
    notes: Optional[str] = None
    fasting: bool = False
    critical: bool = False


class Milestone(CamelModel):
    id: str
    protocol_plan_id: str
    type: MilestoneType
    day_offset: int = Field(..., ge=0)
    label: Optional[str] = None
    details: Optional[str] = None


class ProtocolPlan(CamelModel):
    id: str
    cycle_id: str
    status: ProtocolStatus = "DRAFT"
    source: ProtocolSource = "INTAKE"
    cycle_start_date: date
    notes: Optional[str] = None
    medications: List[Medication] = Field(default_factory=list)
    appointments: List[Appointment] = Field(default_factory=list)
    milestones: List[Milestone] = Field(default_factory=list)


# ---------------------------
# Task meta: one variant per task kind
# ---------------------------

class ReminderMeta(CamelModel):
    kind: Literal["REMINDER"] = "REMINDER"
    medication_id: str
    medication_name: str
    dosage: Optional[str] = None
    instructions: Optional[str] = None


class AppointmentMeta(CamelModel):
    kind: Literal["APPOINTMENT", "CRITICAL"] = "APPOINTMENT"
    appointment_id: str
    appointment_type: AppointmentType
    exact_time: Optional[str] = None
    fasting: bool = False
    critical: bool = False
    notes: Optional[str] = None


class MilestoneMeta(CamelModel):
    kind: Literal["INFO"] = "INFO"
    milestone_id: str
    milestone_type: MilestoneType
    details: Optional[str] = None


class CheckinMeta(CamelModel):
    kind: Literal["CHECKIN"] = "CHECKIN"


TaskMeta = Annotated[
    Union[ReminderMeta, AppointmentMeta, MilestoneMeta, CheckinMeta],
    Field(discriminator="kind"),
]

task_meta_adapter: TypeAdapter = TypeAdapter(TaskMeta)


class PlanDay(CamelModel):
    id: str
    cycle_id: str
    date: date
    cycle_day_index: int
    title: str
    summary: Optional[str] = None


class Task(CamelModel):
    id: str
    cycle_id: str
    plan_day_id: Optional[str] = None
    kind: TaskKind
    label: str
    due_at: datetime
    status: TaskStatus = "PENDING"
    meta: TaskMeta
    sent_at: Optional[datetime] = None


class DueTask(CamelModel):
    """A due task joined with the delivery facts of its owner."""

    task: Task
    user: User
    has_push_subscription: bool = False


# ---------------------------
# Conversation
# ---------------------------

class ChatMessage(CamelModel):
    id: str
    user_id: str
    cycle_id: str
    sender: MessageSender
    type: MessageType
    content: str
    meta: Dict[str, Any] = Field(default_factory=dict)
    read: bool = False
    created_at: datetime


class ConversationState(CamelModel):
    cycle_id: str
    user_id: str
    summary: str = ""


class CheckIn(CamelModel):
    id: str
    user_id: str
    cycle_id: str
    mood: Optional[int] = Field(default=None, ge=1, le=5)
    symptoms: List[str] = Field(default_factory=list)
    note: Optional[str] = None
    source: CheckInSource = "APP"
    created_at: datetime
