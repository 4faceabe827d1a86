"""Clinic Domain - patient-facing tools for the NURA nurse agent.

Mock implementations of the three tools the nurse can call:
- checkVitals: simulated real-time vital signs
- searchMedicalDatabase: canned medical literature lookup
- scheduleAppointment: appointment booking with a ticket number

In production, these would connect to monitoring hardware, a clinical
knowledge base and a scheduling system.
"""

import asyncio
import random
from typing import Any, Optional, Sequence

from shared.logging import get_logger
from shared.models import ToolCallLog, ToolDescriptor, VitalsData, VitalsStatus
from shared.schema import build_parameters_schema
from domains.base import BaseAdapter, DomainToolExecutor

logger = get_logger(__name__)

VITALS_TOOL = "checkVitals"


def generate_mock_vitals(rng: Optional[random.Random] = None) -> VitalsData:
    """Produce a plausible set of vital signs."""
    rng = rng or random.Random()

    heart_rate = 60 + rng.randrange(40)
    systolic = 110 + rng.randrange(30)
    diastolic = 70 + rng.randrange(20)

    status = VitalsStatus.NORMAL
    if heart_rate > 110 or systolic > 140:
        status = VitalsStatus.WARNING

    return VitalsData(
        heart_rate=heart_rate,
        blood_pressure=f"{systolic}/{diastolic}",
        oxygen_level=95 + rng.randrange(5),
        temperature=round(36.5 + rng.random(), 1),
        status=status
    )


class ClinicAdapter(BaseAdapter):
    """
    Clinic Domain Adapter.

    Provides tools for:
    - Vital signs monitoring
    - Medical database search
    - Appointment scheduling
    """

    def __init__(
        self,
        latency_seconds: float = 0.0,
        rng: Optional[random.Random] = None
    ) -> None:
        """
        Initialize the clinic adapter.

        Args:
            latency_seconds: Simulated processing delay per tool call
            rng: Random source for vitals and ticket numbers
        """
        self.latency_seconds = latency_seconds
        self._rng = rng or random.Random()
        super().__init__("clinic")

    def _define_tools(self) -> None:
        """Define all clinic tools."""

        self._add_tool(
            ToolDescriptor(
                name=VITALS_TOOL,
                description="Checks the patient's current real-time vital signs.",
                parameters=build_parameters_schema([])
            ),
            self.check_vitals
        )

        self._add_tool(
            ToolDescriptor(
                name="searchMedicalDatabase",
                description="Searches the internal medical database.",
                parameters=build_parameters_schema([
                    {"name": "query", "type": "string", "description": "Medical symptom or term"},
                ])
            ),
            self.search_medical_database
        )

        self._add_tool(
            ToolDescriptor(
                name="scheduleAppointment",
                description="Schedules an appointment.",
                parameters=build_parameters_schema([
                    {"name": "department", "type": "string", "description": "Hospital department"},
                    {"name": "urgency", "type": "string", "description": "Urgency level", "required": False},
                ])
            ),
            self.schedule_appointment
        )

    async def _simulate_latency(self) -> None:
        if self.latency_seconds:
            await asyncio.sleep(self.latency_seconds)

    async def check_vitals(self) -> dict[str, Any]:
        """Scan the patient's vitals."""
        await self._simulate_latency()

        vitals = generate_mock_vitals(self._rng)

        logger.info("Vitals scanned", heart_rate=vitals.heart_rate, status=vitals.status.value)

        return {
            "vitals": vitals.model_dump(mode="json"),
            "summary": (
                f"Vitals scanned. HR: {vitals.heart_rate}, "
                f"BP: {vitals.blood_pressure}, SpO2: {vitals.oxygen_level}%"
            )
        }

    async def search_medical_database(self, query: str) -> dict[str, Any]:
        """Search the medical knowledge base."""
        await self._simulate_latency()

        return {
            "results": (
                f'Found 3 articles matching "{query}". Common treatments include rest, '
                "hydration, and over-the-counter anti-inflammatories. "
                "Advise monitoring for fever."
            )
        }

    async def schedule_appointment(self, department: str, urgency: Optional[str] = None) -> dict[str, Any]:
        """Reserve an appointment slot."""
        await self._simulate_latency()

        ticket = str(1000 + self._rng.randrange(9000))
        urgency = urgency or "Normal"

        logger.info("Appointment scheduled", department=department, urgency=urgency, ticket=ticket)

        return {
            "confirmation": (
                f"Appointment slot reserved for {department} (Urgency: {urgency}). "
                f"Ticket #{ticket}."
            ),
            "ticket": ticket
        }


def register_clinic_domain(
    executor: DomainToolExecutor,
    latency_seconds: float = 0.0,
    rng: Optional[random.Random] = None
) -> ClinicAdapter:
    """Register the clinic domain with a tool executor."""
    adapter = ClinicAdapter(latency_seconds=latency_seconds, rng=rng)
    executor.register_adapter(adapter)

    logger.info("Clinic domain registered", tool_count=len(adapter.tools))
    return adapter


def extract_vitals(tool_calls: Sequence[ToolCallLog]) -> Optional[VitalsData]:
    """
    Return the newest vitals reading among a submission's tool calls.

    Failed scans are skipped. Returns None when no scan succeeded.
    """
    for call in reversed(tool_calls):
        if call.tool_name == VITALS_TOOL and "vitals" in call.result:
            return VitalsData.model_validate(call.result["vitals"])
    return None
