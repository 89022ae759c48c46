# cohort_attendance/services/zoom_client.py
from __future__ import annotations

import base64
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import httpx
import structlog

from cohort_attendance.core.config import get_settings
from cohort_attendance.schemas.participant import MeetingActualTimes, RawParticipantRecord

logger = structlog.get_logger(__name__)

PARTICIPANTS_PAGE_SIZE = 300


class ZoomClientError(RuntimeError):
    """
    Raised when a Zoom credential cannot be obtained or when a Zoom API call
    fails in a non-recoverable way.
    """


@dataclass(frozen=True)
class ZoomCredential:
    """
    Short-lived Zoom access token.

    Expiry is plain data: callers fetch a fresh credential before each
    reconciliation run and hand it to a ZoomClient.
    """

    access_token: str
    expires_at: datetime

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        now = now or datetime.now(tz=timezone.utc)
        return self.expires_at <= now


class ZoomCredentialProvider:
    """
    Obtains Zoom Server-to-Server OAuth credentials (account_credentials grant).
    """

    def __init__(
        self,
        account_id: str,
        client_id: str,
        client_secret: str,
        oauth_url: str = "https://zoom.us/oauth/token",
        timeout_seconds: float = 10.0,
    ) -> None:
        if not account_id or not client_id or not client_secret:
            raise ValueError("account_id, client_id and client_secret are required")

        self._account_id = account_id
        self._client_id = client_id
        self._client_secret = client_secret
        self._oauth_url = oauth_url
        self._timeout_seconds = timeout_seconds

    async def fetch_credential(self) -> ZoomCredential:
        """
        Fetch a fresh access token from Zoom.

        A small safety margin is subtracted from `expires_in` so the
        credential is considered expired slightly before Zoom rejects it.
        """
        basic = base64.b64encode(
            f"{self._client_id}:{self._client_secret}".encode()
        ).decode()
        headers = {
            "Authorization": f"Basic {basic}",
            "Content-Type": "application/x-www-form-urlencoded",
        }
        data = {
            "grant_type": "account_credentials",
            "account_id": self._account_id,
        }

        async with httpx.AsyncClient(timeout=self._timeout_seconds) as client:
            resp = await client.post(self._oauth_url, data=data, headers=headers)

        if resp.status_code != 200:
            raise ZoomClientError(
                f"Failed to obtain Zoom token (status={resp.status_code}): {resp.text}"
            )

        payload = resp.json()
        access_token = payload.get("access_token")
        expires_in = payload.get("expires_in")

        if not access_token or not isinstance(expires_in, (int, float)):
            raise ZoomClientError(
                "Invalid token response from Zoom (missing access_token/expires_in)"
            )

        now = datetime.now(tz=timezone.utc)
        safety_margin = 60  # seconds
        expires_at = now + timedelta(seconds=float(expires_in) - safety_margin)

        logger.info("zoom_credential_fetched", expires_at=expires_at.isoformat())
        return ZoomCredential(access_token=access_token, expires_at=expires_at)


def encode_meeting_uuid(meeting_id: str) -> str:
    """
    Zoom requires UUIDs that begin with '/' or contain '//' to be double
    URL-encoded when used in a path.
    """
    if meeting_id.startswith("/") or "//" in meeting_id:
        return quote(quote(meeting_id, safe=""), safe="")
    return quote(meeting_id, safe="")


def parse_zoom_datetime(value: Optional[str]) -> Optional[datetime]:
    """
    Parse a Zoom ISO-8601 timestamp and normalize to UTC.

    Returns None for empty or unparseable values.
    """
    if not value:
        return None
    try:
        dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None

    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


class ZoomClient:
    """
    Minimal Zoom REST client for completed-meeting data.

    Responsibilities
    ----------------
    - List the full participant log of a past meeting (paginated).
    - Fetch the actual start/end times of a past meeting.
    - Avoid leaking HTTP client details into the reconciliation engine.
    """

    def __init__(
        self,
        credential: ZoomCredential,
        base_url: str = "https://api.zoom.us/v2",
        timeout_seconds: float = 10.0,
    ) -> None:
        self._credential = credential
        self._base_url = base_url.rstrip("/")
        self._timeout_seconds = timeout_seconds

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[Dict[str, Any]] = None,
    ) -> httpx.Response:
        """
        Low-level helper for issuing an authenticated HTTP request to Zoom.
        """
        if self._credential.is_expired():
            raise ZoomClientError("Zoom credential has expired; fetch a new one")

        url = f"{self._base_url}/{path.lstrip('/')}"
        headers = {
            "Authorization": f"Bearer {self._credential.access_token}",
            "Accept": "application/json",
        }

        try:
            async with httpx.AsyncClient(timeout=self._timeout_seconds) as client:
                resp = await client.request(
                    method=method.upper(),
                    url=url,
                    headers=headers,
                    params=params,
                )
        except httpx.HTTPError as exc:
            raise ZoomClientError(f"Zoom {method.upper()} {path} failed: {exc}") from exc
        return resp

    async def get_json(
        self,
        path: str,
        *,
        params: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """
        Issue a GET request and return the JSON payload.

        Raises ZoomClientError on non-2xx responses.
        """
        resp = await self._request("GET", path, params=params)
        if resp.status_code // 100 != 2:
            raise ZoomClientError(
                f"Zoom GET {path} failed (status={resp.status_code}): {resp.text}"
            )
        return resp.json()

    async def list_participants(self, meeting_id: str) -> List[RawParticipantRecord]:
        """
        Return every connection event of a completed meeting.

        Follows `next_page_token` until exhausted. Ordering is whatever Zoom
        returns; callers must not depend on it.
        """
        path = f"/past_meetings/{encode_meeting_uuid(meeting_id)}/participants"
        records: List[RawParticipantRecord] = []
        next_page_token: Optional[str] = None

        while True:
            params: Dict[str, Any] = {"page_size": PARTICIPANTS_PAGE_SIZE}
            if next_page_token:
                params["next_page_token"] = next_page_token

            payload = await self.get_json(path, params=params)
            for item in payload.get("participants", []):
                record = self._to_record(meeting_id, len(records), item)
                if record is not None:
                    records.append(record)

            next_page_token = payload.get("next_page_token") or None
            if not next_page_token:
                break

        logger.info("zoom_participants_listed", meeting_id=meeting_id, count=len(records))
        return records

    async def get_meeting_actual_times(self, meeting_id: str) -> Optional[MeetingActualTimes]:
        """
        Actual start/end of a past meeting, or None if Zoom does not report both.
        """
        payload = await self.get_json(f"/past_meetings/{encode_meeting_uuid(meeting_id)}")
        start = parse_zoom_datetime(payload.get("start_time"))
        end = parse_zoom_datetime(payload.get("end_time"))
        if start is None or end is None:
            return None
        return MeetingActualTimes(
            meeting_id=meeting_id,
            start_time=start,
            end_time=end,
            raw=payload,
        )

    def _to_record(
        self, meeting_id: str, index: int, item: Dict[str, Any]
    ) -> Optional[RawParticipantRecord]:
        join_time = parse_zoom_datetime(item.get("join_time"))
        if join_time is None:
            logger.warning("zoom_participant_without_join_time", meeting_id=meeting_id, item=item)
            return None

        participant_id = item.get("id") or item.get("user_id") or f"{meeting_id}#{index}"
        return RawParticipantRecord(
            participant_id=str(participant_id),
            email=item.get("user_email") or None,
            display_name=item.get("name") or "",
            join_time=join_time,
            leave_time=parse_zoom_datetime(item.get("leave_time")),
        )


async def build_zoom_client() -> ZoomClient:
    """
    Build a ZoomClient with a freshly fetched credential from app settings.

    Intended to be called once per reconciliation run (e.g. as a FastAPI
    dependency), never cached at module level.
    """
    settings = get_settings()
    if not settings.ZOOM_ACCOUNT_ID or not settings.ZOOM_CLIENT_ID or not settings.ZOOM_CLIENT_SECRET:
        raise ZoomClientError(
            "ZOOM_ACCOUNT_ID, ZOOM_CLIENT_ID and ZOOM_CLIENT_SECRET must be "
            "configured in settings to use the Zoom client."
        )
    credentials = ZoomCredentialProvider(
        account_id=settings.ZOOM_ACCOUNT_ID,
        client_id=settings.ZOOM_CLIENT_ID,
        client_secret=settings.ZOOM_CLIENT_SECRET,
        oauth_url=settings.ZOOM_OAUTH_URL,
        timeout_seconds=settings.ZOOM_TIMEOUT_SECONDS,
    )
    credential = await credentials.fetch_credential()
    return ZoomClient(
        credential=credential,
        base_url=settings.ZOOM_BASE_URL,
        timeout_seconds=settings.ZOOM_TIMEOUT_SECONDS,
    )
