"""Database models."""
from datetime import datetime
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Text, JSON
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


class Company(Base):
    """Company the AI agent sells for."""

    __tablename__ = "companies"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    knowledge_base = relationship("KnowledgeBase", back_populates="company", uselist=False)
    leads = relationship("Lead", back_populates="company")


class KnowledgeBase(Base):
    """Product, service and sales-instruction knowledge for one company."""

    __tablename__ = "knowledge_bases"

    id = Column(Integer, primary_key=True, index=True)
    company_id = Column(Integer, ForeignKey("companies.id"), unique=True, nullable=False)
    company_info = Column(Text, nullable=True)
    products = Column(JSON, nullable=True)  # [{name, price, description, features}]
    services = Column(JSON, nullable=True)  # [{name, price, description, benefits}]
    sales_instructions = Column(Text, nullable=True)
    greeting_script = Column(Text, nullable=True)  # Literal opening line, may contain {lead_name}
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    company = relationship("Company", back_populates="knowledge_base")


class Lead(Base):
    """Prospect the agent calls."""

    __tablename__ = "leads"

    id = Column(Integer, primary_key=True, index=True)
    company_id = Column(Integer, ForeignKey("companies.id"), nullable=False)
    name = Column(String, nullable=False)
    phone = Column(String, nullable=True)
    email = Column(String, nullable=True)
    company_name = Column(String, nullable=True)
    ai_insights = Column(JSON, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    company = relationship("Company", back_populates="leads")


class ScheduledTask(Base):
    """A persisted intent to act on a lead at a given time."""

    __tablename__ = "tasks"

    id = Column(Integer, primary_key=True, index=True)
    lead_id = Column(Integer, ForeignKey("leads.id"), nullable=False)
    company_id = Column(Integer, ForeignKey("companies.id"), nullable=False)
    task_type = Column(String, default="call", nullable=False)  # call, email, message
    scheduled_at = Column(DateTime, nullable=False, index=True)
    status = Column(String, default="pending", nullable=False, index=True)  # pending, in_progress, completed, failed, cancelled
    result_metadata = Column(JSON, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    lead = relationship("Lead")
    call_sessions = relationship("CallSession", back_populates="task")


class CallSession(Base):
    """One outbound call attempt and its evolving state."""

    __tablename__ = "call_sessions"

    id = Column(Integer, primary_key=True, index=True)
    call_id = Column(String, unique=True, index=True, nullable=False)  # Provider call SID
    task_id = Column(Integer, ForeignKey("tasks.id"), nullable=True)
    lead_id = Column(Integer, ForeignKey("leads.id"), nullable=True)
    lead_name = Column(String, nullable=True)
    company_id = Column(Integer, ForeignKey("companies.id"), nullable=True)
    status = Column(String, default="initiated", nullable=False)
    started_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    ended_at = Column(DateTime, nullable=True)
    duration_seconds = Column(Integer, nullable=True)
    recording_ref = Column(String, nullable=True)
    conversation_turn_count = Column(Integer, default=0, nullable=False)
    status_history = Column(JSON, nullable=True)  # [{status, at, flagged, reason}]
    insights = Column(JSON, nullable=True)

    task = relationship("ScheduledTask", back_populates="call_sessions")
    transcript_entries = relationship(
        "TranscriptEntry",
        back_populates="call_session",
        order_by="TranscriptEntry.position",
        cascade="all, delete-orphan",
    )


class TranscriptEntry(Base):
    """Append-only transcript line of a call session."""

    __tablename__ = "transcript_entries"

    id = Column(Integer, primary_key=True, index=True)
    call_session_id = Column(Integer, ForeignKey("call_sessions.id"), nullable=False, index=True)
    position = Column(Integer, nullable=False)
    speaker = Column(String, nullable=False)  # agent, lead
    text = Column(Text, nullable=False)
    spoken_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    call_session = relationship("CallSession", back_populates="transcript_entries")
