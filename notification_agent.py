"""
Notification Agent for BloodLink
Reacts to domain events (requests, registrations, reminders) by running a
LangGraph workflow that calls the donor matcher and the notification service
"""

import asyncio
import logging
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, TypedDict, Union

from langgraph.graph import StateGraph, END

from config import Settings, get_settings
from donor_matching import (
    BloodRequest,
    Donor,
    DonorMatchingEngine,
    MatchingDonor,
    DONATION_INTERVAL_DAYS,
    days_since,
    validate_donor_data,
    validate_request_data,
)
from notification_service import NotificationService, Recipient, build_notification_service
from record_store import InMemoryRecordStore, RecordStore, RecordStoreError, RestRecordStore

logger = logging.getLogger(__name__)

# Never-donated donors get their first reminder this many days after registering
FIRST_REMINDER_DAYS = 30

PENDING_REQUEST_ALERT_LIMIT = 3


class TriggerType(Enum):
    BLOOD_REQUEST_SUBMITTED = "blood_request_submitted"
    DONOR_REGISTERED = "donor_registered"
    DONATION_DUE = "donation_due"
    APPOINTMENT_SCHEDULED = "appointment_scheduled"
    VOLUNTEER_REGISTERED = "volunteer_registered"
    PARTNERSHIP_INQUIRY = "partnership_inquiry"


class TriggerState(TypedDict):
    """State object for the notification workflow"""
    trigger: str
    data: Dict[str, Any]
    request: Optional[BloodRequest]
    matches: Optional[List[MatchingDonor]]
    notified_donors: int
    current_step: str
    error_message: Optional[str]
    success: bool


# Trigger -> first workflow node
HANDLER_NODES = {
    TriggerType.BLOOD_REQUEST_SUBMITTED.value: "confirm_request",
    TriggerType.DONOR_REGISTERED.value: "welcome_donor",
    TriggerType.DONATION_DUE.value: "remind_donation",
    TriggerType.APPOINTMENT_SCHEDULED.value: "remind_appointment",
    TriggerType.VOLUNTEER_REGISTERED.value: "welcome_volunteer",
    TriggerType.PARTNERSHIP_INQUIRY.value: "confirm_partnership",
}


def _request_payload(request: BloodRequest) -> Dict[str, Any]:
    return {
        "blood_group": request.blood_group,
        "patient_name": request.patient_name,
        "hospital_name": request.hospital_name,
        "city": request.city,
        "country": request.country,
        "contact_number": request.contact_number,
        "urgency_level": request.urgency_level,
    }


def registration_day(created_at: datetime) -> date:
    """Calendar day of a registration timestamp in local time, matching date.today()"""
    if created_at.tzinfo is None:
        return created_at.date()
    return created_at.astimezone().date()


class NotificationAgent:
    """Event-driven agent that matches donors and sends notifications"""

    def __init__(self, store: RecordStore, notifier: NotificationService,
                 matcher: Optional[DonorMatchingEngine] = None,
                 donor_fanout_limit: int = 5,
                 deduplicate_reminders: bool = True,
                 today_provider: Callable[[], date] = date.today):
        self.store = store
        self.notifier = notifier
        self.matcher = matcher or DonorMatchingEngine(store, today_provider=today_provider)
        self.donor_fanout_limit = donor_fanout_limit
        self.deduplicate_reminders = deduplicate_reminders
        self.today_provider = today_provider
        # donor id -> day the last eligibility reminder went out
        self._reminded_on: Dict[str, date] = {}

        self.workflow = self._create_workflow()

    def _create_workflow(self):
        """Create LangGraph workflow routing each trigger to its handler steps"""

        workflow = StateGraph(TriggerState)

        workflow.add_node("route_trigger", self._route_trigger)
        workflow.add_node("confirm_request", self._confirm_request)
        workflow.add_node("find_donors", self._find_donors)
        workflow.add_node("notify_donors", self._notify_donors)
        workflow.add_node("welcome_donor", self._welcome_donor)
        workflow.add_node("check_pending_requests", self._check_pending_requests)
        workflow.add_node("remind_donation", self._remind_donation)
        workflow.add_node("remind_appointment", self._remind_appointment)
        workflow.add_node("welcome_volunteer", self._welcome_volunteer)
        workflow.add_node("confirm_partnership", self._confirm_partnership)
        workflow.add_node("finalize", self._finalize)

        workflow.set_entry_point("route_trigger")
        workflow.add_conditional_edges(
            "route_trigger",
            self._select_handler,
            {name: name for name in list(HANDLER_NODES.values()) + ["finalize"]},
        )

        workflow.add_edge("confirm_request", "find_donors")
        workflow.add_edge("find_donors", "notify_donors")
        workflow.add_edge("notify_donors", "finalize")
        workflow.add_edge("welcome_donor", "check_pending_requests")
        workflow.add_edge("check_pending_requests", "finalize")
        for name in ("remind_donation", "remind_appointment", "welcome_volunteer", "confirm_partnership"):
            workflow.add_edge(name, "finalize")
        workflow.add_edge("finalize", END)

        return workflow.compile()

    async def _route_trigger(self, state: TriggerState) -> TriggerState:
        trigger = state["trigger"]
        if trigger not in HANDLER_NODES:
            logger.warning(f"Unknown notification trigger: {trigger}")
            state["error_message"] = f"Unknown notification trigger: {trigger}"
        else:
            logger.info(f"Processing notification trigger: {trigger}")
            state["current_step"] = trigger
        return state

    def _select_handler(self, state: TriggerState) -> str:
        if state.get("error_message"):
            return "finalize"
        return HANDLER_NODES[state["trigger"]]

    # blood_request_submitted

    async def _confirm_request(self, state: TriggerState) -> TriggerState:
        """Confirm the request to the requester"""
        try:
            data = state["data"]
            request = BloodRequest.from_record(data)
            state["request"] = request

            await self.notifier.send_blood_request_confirmation(
                Recipient(name=request.patient_name, email=data.get("contact_email"),
                          phone=request.contact_number),
                _request_payload(request),
            )
            state["current_step"] = "request_confirmed"
        except Exception as e:
            logger.error(f"Error confirming blood request: {e}")
            state["error_message"] = str(e)
        return state

    async def _find_donors(self, state: TriggerState) -> TriggerState:
        """Run the matcher and tell the requester how many donors were found"""
        request = state.get("request")
        if request is None:
            return state

        try:
            matches = await self.matcher.find_matching_donors(request)
            state["matches"] = matches
            state["current_step"] = "donors_matched"

            if matches:
                await self.notifier.send_donor_match_notification(
                    Recipient(name=request.patient_name, email=state["data"].get("contact_email"),
                              phone=request.contact_number),
                    {
                        "blood_group": request.blood_group,
                        "donor_count": len(matches),
                        "city": request.city,
                        "country": request.country,
                    },
                )
            else:
                logger.info(f"No donors found yet for {request.patient_name}, will keep searching")
        except Exception as e:
            logger.error(f"Error finding matching donors: {e}")
            state["error_message"] = str(e)
        return state

    async def _notify_donors(self, state: TriggerState) -> TriggerState:
        """Alert the top-ranked donors about the request"""
        request = state.get("request")
        matches = state.get("matches") or []
        if request is None or not matches:
            return state

        top_donors = matches[:self.donor_fanout_limit]
        results = await asyncio.gather(
            *(self._alert_donor(donor.full_name, donor.phone_number, request) for donor in top_donors)
        )
        state["notified_donors"] = sum(1 for ok in results if ok)
        state["current_step"] = "donors_notified"
        logger.info(f"Notified {state['notified_donors']} of {len(top_donors)} matched donors")
        return state

    async def _alert_donor(self, name: str, phone: str, request: BloodRequest) -> bool:
        try:
            return await self.notifier.send_donor_request_alert(
                Recipient(name=name, phone=phone), _request_payload(request), request.urgency_level
            )
        except Exception as e:
            logger.error(f"Failed to notify donor {name}: {e}")
            return False

    # donor_registered

    async def _welcome_donor(self, state: TriggerState) -> TriggerState:
        data = state["data"]
        try:
            await self.notifier.send_donor_welcome(
                Recipient(name=data.get("full_name", ""), email=data.get("email"),
                          phone=data.get("phone_number")),
                {
                    "blood_group": data.get("blood_group"),
                    "city": data.get("city"),
                    "country": data.get("country"),
                },
            )
            state["current_step"] = "donor_welcomed"
        except Exception as e:
            logger.error(f"Failed to send welcome message to {data.get('full_name')}: {e}")
            state["error_message"] = str(e)
        return state

    async def _check_pending_requests(self, state: TriggerState) -> TriggerState:
        """Tell a new donor about urgent pending requests for their blood group"""
        data = state["data"]
        try:
            pending = await (self.store.select("blood_requests")
                             .eq("status", "pending")
                             .eq("country", data.get("country"))
                             .eq("blood_group", data.get("blood_group"))
                             .order("created_at", desc=True)
                             .execute())

            urgent = [BloodRequest.from_record(row) for row in pending]
            urgent = [r for r in urgent if r.urgency_level == "high"][:PENDING_REQUEST_ALERT_LIMIT]
            logger.info(f"Found {len(pending)} pending requests for new donor, {len(urgent)} urgent")

            if urgent:
                results = await asyncio.gather(
                    *(self._alert_donor(data.get("full_name", ""), data.get("phone_number"), r)
                      for r in urgent)
                )
                state["notified_donors"] = sum(1 for ok in results if ok)
            state["current_step"] = "pending_requests_checked"
        except Exception as e:
            logger.error(f"Error checking pending requests for new donor: {e}")
            state["error_message"] = str(e)
        return state

    # single-step triggers

    async def _remind_donation(self, state: TriggerState) -> TriggerState:
        data = state["data"]
        try:
            if "days_since_last_donation" in data:
                days = data["days_since_last_donation"]
            else:
                days = days_since(Donor.from_record(data).last_donation_date, self.today_provider())

            if days is not None and days < DONATION_INTERVAL_DAYS:
                logger.info(f"{data.get('full_name')} is not eligible yet ({days} days), skipping reminder")
                state["current_step"] = "reminder_skipped"
                return state

            await self.notifier.send_donation_reminder(
                Recipient(name=data.get("full_name", ""), email=data.get("email"),
                          phone=data.get("phone_number")),
                {"blood_group": data.get("blood_group"), "days_since_last_donation": days},
            )
            state["current_step"] = "reminder_sent"
        except Exception as e:
            logger.error(f"Error sending donation reminder: {e}")
            state["error_message"] = str(e)
        return state

    async def _remind_appointment(self, state: TriggerState) -> TriggerState:
        data = state["data"]
        try:
            await self.notifier.send_appointment_reminder(
                Recipient(name=data.get("donor_name", ""), email=data.get("donor_email"),
                          phone=data.get("donor_phone")),
                {
                    "appointment_date": data.get("appointment_date"),
                    "appointment_time": data.get("appointment_time"),
                    "hospital_name": data.get("hospital_name"),
                    "city": data.get("city"),
                },
            )
            state["current_step"] = "appointment_reminder_sent"
        except Exception as e:
            logger.error(f"Error sending appointment reminder: {e}")
            state["error_message"] = str(e)
        return state

    async def _welcome_volunteer(self, state: TriggerState) -> TriggerState:
        data = state["data"]
        try:
            await self.notifier.send_volunteer_welcome(
                Recipient(name=data.get("name", ""), email=data.get("email")),
                {"name": data.get("name"), "region": data.get("region"),
                 "motivation": data.get("motivation")},
            )
            state["current_step"] = "volunteer_welcomed"
        except Exception as e:
            logger.error(f"Failed to send welcome message to volunteer {data.get('name')}: {e}")
            state["error_message"] = str(e)
        return state

    async def _confirm_partnership(self, state: TriggerState) -> TriggerState:
        data = state["data"]
        try:
            await self.notifier.send_partnership_confirmation(
                Recipient(name=data.get("contact_name", ""), email=data.get("email")),
                {
                    "organization_name": data.get("organization_name"),
                    "contact_name": data.get("contact_name"),
                    "organization_type": data.get("organization_type"),
                    "message": data.get("message"),
                },
            )
            state["current_step"] = "partnership_confirmed"
        except Exception as e:
            logger.error(f"Failed to send partnership confirmation to {data.get('organization_name')}: {e}")
            state["error_message"] = str(e)
        return state

    async def _finalize(self, state: TriggerState) -> TriggerState:
        """Finalize the workflow"""
        if not state.get("error_message"):
            state["success"] = True
            logger.info(f"Trigger {state['trigger']} completed ({state['current_step']})")
        else:
            state["success"] = False
            logger.error(f"Trigger {state['trigger']} failed: {state['error_message']}")
        return state

    async def process_trigger(self, trigger: Union[TriggerType, str], data: Dict[str, Any]) -> Dict[str, Any]:
        """
        Process one notification trigger.

        Errors are caught and reported in the result, so one failing trigger
        never affects another.

        Returns:
            dict with success, error, current_step, matches and notified_donors
        """
        trigger_name = trigger.value if isinstance(trigger, TriggerType) else str(trigger)

        initial_state = TriggerState(
            trigger=trigger_name,
            data=dict(data or {}),
            request=None,
            matches=None,
            notified_donors=0,
            current_step="start",
            error_message=None,
            success=False,
        )

        try:
            final_state = await self.workflow.ainvoke(initial_state)
        except Exception as e:
            logger.error(f"Error processing notification trigger {trigger_name}: {e}")
            return {"trigger": trigger_name, "success": False, "error": str(e),
                    "current_step": "failed", "matches": [], "notified_donors": 0}

        return {
            "trigger": trigger_name,
            "success": final_state.get("success", False),
            "error": final_state.get("error_message"),
            "current_step": final_state.get("current_step", "unknown"),
            "matches": final_state.get("matches") or [],
            "notified_donors": final_state.get("notified_donors", 0),
        }

    async def schedule_eligibility_reminders(self) -> int:
        """
        Daily sweep: fire donation_due for donors exactly 90 days past their
        last donation, or never-donated donors registered exactly 30 days ago.

        Returns:
            int: Number of reminders sent
        """
        logger.info("Checking for donors eligible for donation reminders")
        today = self.today_provider()
        self._reminded_on = {
            donor_id: day for donor_id, day in self._reminded_on.items() if day == today
        }

        try:
            rows = await self.store.select("donors").eq("is_available", True).execute()
        except RecordStoreError as e:
            logger.error(f"Error fetching donors for reminders: {e}")
            return 0

        reminders_sent = 0
        for row in rows:
            donor = Donor.from_record(row)

            if donor.last_donation_date is not None:
                days = days_since(donor.last_donation_date, today)
                is_due = days == DONATION_INTERVAL_DAYS
            else:
                days = None
                is_due = (donor.created_at is not None
                          and (today - registration_day(donor.created_at)).days == FIRST_REMINDER_DAYS)

            if not is_due:
                continue

            if self.deduplicate_reminders and self._reminded_on.get(donor.id) == today:
                logger.info(f"Donor {donor.id} already reminded today, skipping")
                continue

            result = await self.process_trigger(
                TriggerType.DONATION_DUE, {**row, "days_since_last_donation": days}
            )
            if result["success"]:
                self._reminded_on[donor.id] = today
                reminders_sent += 1

        logger.info(f"Sent {reminders_sent} donation reminders")
        return reminders_sent

    async def send_emergency_alert(self, request_data: Dict[str, Any]) -> int:
        """
        Alert every matched donor about a critical request.

        Returns:
            int: Number of donors successfully alerted
        """
        logger.warning(f"Sending emergency blood alert for {request_data.get('blood_group')}")

        try:
            request = BloodRequest.from_record({**request_data, "urgency_level": "high"})
            matches = await self.matcher.find_matching_donors(request)
        except Exception as e:
            logger.error(f"Error sending emergency alerts: {e}")
            return 0

        results = await asyncio.gather(
            *(self._alert_donor(donor.full_name, donor.phone_number, request) for donor in matches)
        )
        alerted = sum(1 for ok in results if ok)
        logger.info(f"Sent emergency alerts to {alerted} of {len(matches)} donors")
        return alerted

    async def submit_blood_request(self, request_data: Dict[str, Any]) -> Dict[str, Any]:
        """Validate, store and process a new blood request"""
        logger.info(f"Processing blood request for patient: {request_data.get('patient_name', 'Unknown')}")

        is_valid, error_msg = validate_request_data(request_data)
        if not is_valid:
            return {"success": False, "error": error_msg}

        record = {**request_data, "urgency_level": request_data["urgency_level"].lower(),
                  "status": "pending"}
        try:
            inserted = await self.store.insert("blood_requests", [record])
        except RecordStoreError as e:
            logger.error(f"Error storing blood request: {e}")
            return {"success": False, "error": str(e)}

        stored = inserted[0] if inserted else record
        result = await self.process_trigger(TriggerType.BLOOD_REQUEST_SUBMITTED, stored)
        return {**result, "request_id": stored.get("id")}

    async def register_donor(self, donor_data: Dict[str, Any]) -> Dict[str, Any]:
        """Validate, store and welcome a new donor"""
        logger.info(f"Registering donor: {donor_data.get('full_name', 'Unknown')}")

        is_valid, error_msg = validate_donor_data(donor_data)
        if not is_valid:
            return {"success": False, "error": error_msg}

        record = {"is_available": True, "last_donation_date": None, **donor_data}
        try:
            inserted = await self.store.insert("donors", [record])
        except RecordStoreError as e:
            logger.error(f"Error registering donor: {e}")
            return {"success": False, "error": str(e)}

        stored = inserted[0] if inserted else record
        result = await self.process_trigger(TriggerType.DONOR_REGISTERED, stored)
        return {**result, "donor_id": stored.get("id")}

    async def register_volunteer(self, volunteer_data: Dict[str, Any]) -> Dict[str, Any]:
        for field_name in ("name", "email", "region"):
            if not volunteer_data.get(field_name):
                return {"success": False, "error": f"Missing required field: {field_name}"}

        try:
            inserted = await self.store.insert("volunteers", [{**volunteer_data, "status": "pending"}])
        except RecordStoreError as e:
            logger.error(f"Error registering volunteer: {e}")
            return {"success": False, "error": str(e)}

        return await self.process_trigger(TriggerType.VOLUNTEER_REGISTERED, inserted[0])

    async def submit_partnership_inquiry(self, partner_data: Dict[str, Any]) -> Dict[str, Any]:
        for field_name in ("organization_name", "contact_name", "email"):
            if not partner_data.get(field_name):
                return {"success": False, "error": f"Missing required field: {field_name}"}

        try:
            inserted = await self.store.insert("partnerships", [{**partner_data, "status": "pending"}])
        except RecordStoreError as e:
            logger.error(f"Error storing partnership inquiry: {e}")
            return {"success": False, "error": str(e)}

        return await self.process_trigger(TriggerType.PARTNERSHIP_INQUIRY, inserted[0])

    async def get_system_stats(self) -> Dict[str, Any]:
        """Aggregated counts for the admin dashboard"""
        try:
            donors, requests, volunteers, partnerships = await asyncio.gather(
                *(self.store.select(table).order("created_at", desc=True).execute()
                  for table in ("donors", "blood_requests", "volunteers", "partnerships"))
            )
        except RecordStoreError as e:
            logger.error(f"Error getting system stats: {e}")
            return {"error": str(e)}

        week_ago = (self.today_provider() - timedelta(days=7)).isoformat()

        def recent(rows):
            return sum(1 for row in rows if str(row.get("created_at") or "")[:10] > week_ago)

        return {
            "total_donors": len(donors),
            "available_donors": sum(1 for d in donors if d.get("is_available")),
            "total_requests": len(requests),
            "active_requests": sum(1 for r in requests if r.get("status") == "pending"),
            "total_volunteers": len(volunteers),
            "total_partnerships": len(partnerships),
            "recent_donors": recent(donors),
            "recent_requests": recent(requests),
            "notifications": self.notifier.get_notification_stats(),
        }

    def close(self):
        """Clean up resources"""
        self.notifier.close()


def create_agent(settings: Optional[Settings] = None, store: Optional[RecordStore] = None) -> NotificationAgent:
    """Build an agent from settings; without a store URL the data lives in memory"""
    settings = settings or get_settings()

    if store is None:
        if settings.store.url:
            store = RestRecordStore(settings.store.url, settings.store.api_key,
                                    settings.store.timeout_seconds)
        else:
            logger.info("No record store URL configured, using in-memory store")
            store = InMemoryRecordStore()

    matcher = DonorMatchingEngine(store, city_limit=settings.matching.city_limit,
                                  country_limit=settings.matching.country_limit)
    return NotificationAgent(
        store,
        build_notification_service(settings),
        matcher=matcher,
        donor_fanout_limit=settings.donor_fanout_limit,
        deduplicate_reminders=settings.deduplicate_reminders,
    )


# Example usage
async def main():
    """Demo of the BloodLink notification agent"""
    settings = get_settings()
    logging.basicConfig(level=getattr(logging, settings.log_level, logging.INFO))

    today = date.today()
    store = InMemoryRecordStore({
        "donors": [
            {"full_name": "Camille Martin", "phone_number": "+33600000001", "country": "FR",
             "city": "Paris", "blood_group": "AB-", "is_available": True,
             "last_donation_date": (today - timedelta(days=100)).isoformat()},
            {"full_name": "Louis Bernard", "phone_number": "+33600000002", "country": "FR",
             "city": "Lyon", "blood_group": "O-", "is_available": True,
             "last_donation_date": (today - timedelta(days=10)).isoformat()},
            {"full_name": "Ines Petit", "phone_number": "+33600000003", "country": "FR",
             "city": "Paris", "blood_group": "O-", "is_available": True,
             "last_donation_date": None},
        ],
    })
    agent = create_agent(settings, store=store)

    print("=== BloodLink Notification Agent Demo ===\n")

    try:
        print("1. Submitting blood request...")
        result = await agent.submit_blood_request({
            "patient_name": "Emergency Patient",
            "blood_group": "AB-",
            "country": "FR",
            "city": "Paris",
            "urgency_level": "high",
            "hospital_name": "Hopital Lariboisiere",
            "contact_number": "+33100000000",
            "preferred_date": (today + timedelta(days=1)).isoformat(),
            "preferred_time": "10:00",
        })
        print(f"Success: {result['success']}, donors notified: {result['notified_donors']}")
        for i, donor in enumerate(result["matches"], 1):
            print(f"{i}. {agent.matcher.format_donor_info(donor)} (score {donor.compatibility_score})")

        print("\n2. Registering donor...")
        result = await agent.register_donor({
            "full_name": "Hugo Moreau", "phone_number": "+33600000004", "country": "FR",
            "city": "Marseille", "blood_group": "AB-",
        })
        print(f"Success: {result['success']}, urgent requests sent: {result['notified_donors']}")

        print("\n3. Eligibility sweep...")
        print(f"Reminders sent: {await agent.schedule_eligibility_reminders()}")

        print("\n4. System statistics:")
        stats = await agent.get_system_stats()
        print(f"Total donors: {stats['total_donors']}")
        print(f"Active requests: {stats['active_requests']}")
        print(f"Notifications: {stats['notifications']}")
    finally:
        agent.close()


if __name__ == "__main__":
    asyncio.run(main())
