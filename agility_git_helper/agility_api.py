from __future__ import annotations

import logging
from typing import Any

import requests
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .config import CERT_FILE, get_validated_config
from .errors import ApiError, NotFoundError
from .logging import sanitize_for_log
from .models import MemberInfo, StatusInfo, TeamInfo, TicketData
from .tickets import map_assets_to_tickets

logger = logging.getLogger("agility_git_helper.agility_api")

REQUEST_TIMEOUT = 15.0

TICKET_FIELDS = "Name,Number,Status.Name,Estimate,Scope.Name,AssetType"
DETAIL_FIELDS = (
    "Name,Number,Description,Status.Name,Owners.Name,Estimate,ToDo,"
    "Scope.Name,ChangeDate,AssetType"
)

XML_CONTENT_TYPE = "text/xml; charset=utf-8"


# --- typed decode of raw assets ---


class RawAttribute(BaseModel):
    model_config = ConfigDict(extra="ignore")

    name: str
    value: Any = None


class RawAsset(BaseModel):
    """One asset record as returned under ``Assets`` by the rest-1.v1 API."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    id: str = Field(min_length=1)
    attributes: dict[str, RawAttribute] = Field(default_factory=dict, alias="Attributes")

    @property
    def asset_id(self) -> str:
        return extract_asset_id(self.id)

    def attrs(self) -> dict[str, Any]:
        """Flatten the attribute map to {attribute name: value}."""
        return {a.name: a.value for a in self.attributes.values()}


class AssetsEnvelope(BaseModel):
    model_config = ConfigDict(extra="ignore")

    Assets: list[Any] = Field(default_factory=list)


def extract_asset_id(oid: str) -> str:
    """'Story:12345' → '12345'. Bare ids are returned unchanged."""
    _, sep, tail = oid.partition(":")
    return tail if sep and tail else oid


def decode_assets(payload: Any) -> list[RawAsset]:
    """Decode the ``Assets`` list of a response.

    A malformed envelope is an ApiError. Individual records that fail validation
    are logged and skipped so one bad record does not hide the rest.
    """
    try:
        envelope = AssetsEnvelope.model_validate(payload)
    except ValidationError as e:
        raise ApiError(f"Malformed response from Agility: {e.error_count()} error(s)") from e
    assets: list[RawAsset] = []
    for raw in envelope.Assets:
        try:
            assets.append(RawAsset.model_validate(raw))
        except ValidationError as e:
            logger.warning("Rejected asset record: %s", e.errors(include_url=False))
    return assets


# --- transport ---


class AgilityClient:
    """Thin wrapper over requests for the Agility rest-1.v1 endpoints."""

    def __init__(
        self,
        instance_url: str,
        token: str,
        timeout: float = REQUEST_TIMEOUT,
        session: requests.Session | None = None,
    ) -> None:
        self.instance_url = instance_url.rstrip("/")
        self.base_url = f"{self.instance_url}/rest-1.v1"
        self.token = token
        self.timeout = timeout
        self._session = session

    @property
    def session(self) -> requests.Session:
        if self._session is None:
            session = requests.Session()
            session.headers.update({
                "Authorization": f"Bearer {self.token}",
                "Accept": "application/json",
            })
            if CERT_FILE.exists():
                session.verify = str(CERT_FILE)
            self._session = session
        return self._session

    def close(self) -> None:
        if self._session is not None:
            self._session.close()
            self._session = None

    def __enter__(self) -> AgilityClient:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    def _url(self, path: str) -> str:
        return f"{self.base_url}/{path.lstrip('/')}"

    def get(self, path: str, params: dict[str, str] | None = None) -> Any:
        """GET a rest-1.v1 path and return the decoded JSON body."""
        logger.debug("GET %s params=%s", path, params)
        try:
            r = self.session.get(self._url(path), params=params, timeout=self.timeout)
        except requests.RequestException as e:
            raise ApiError(f"Request to Agility failed: {e}") from e
        _raise_for_status(r, f"GET {path} failed")
        try:
            return r.json()
        except ValueError as e:
            raise ApiError(f"GET {path} returned a non-JSON body", r.status_code, r.text) from e

    def post_xml(self, path: str, body: str) -> None:
        """POST an XML document to a rest-1.v1 path."""
        logger.debug("POST %s", path)
        try:
            r = self.session.post(
                self._url(path),
                data=body.encode("utf-8"),
                headers={"Content-Type": XML_CONTENT_TYPE},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise ApiError(f"Request to Agility failed: {e}") from e
        _raise_for_status(r, f"POST {path} failed")


def _raise_for_status(response: requests.Response, message: str) -> None:
    if 200 <= response.status_code < 300:
        return
    body = response.text or None
    logger.info("%s: HTTP %s %s", message, response.status_code, sanitize_for_log(body or ""))
    raise ApiError(message, response.status_code, body)


def get_agility_client() -> AgilityClient:
    """Build a client from the persisted configuration (ConfigurationError if incomplete)."""
    url, token = get_validated_config()
    return AgilityClient(url, token)


# --- directory ---


def fetch_members(client: AgilityClient) -> list[MemberInfo]:
    """Return all members, sorted by name."""
    data = client.get("/Data/Member", params={"select": "Name,Username"})
    members = []
    for asset in decode_assets(data):
        attrs = asset.attrs()
        username = attrs.get("Username")
        members.append(MemberInfo(
            id=asset.asset_id,
            name=str(attrs.get("Name") or username or ""),
            username=str(username) if username else "—",
        ))
    return sorted(members, key=lambda m: m.name.lower())


def fetch_teams(client: AgilityClient) -> list[TeamInfo]:
    """Return all teams, sorted by name."""
    data = client.get("/Data/Team", params={"select": "Name"})
    teams = [
        TeamInfo(id=asset.asset_id, name=str(asset.attrs().get("Name") or "Unnamed Team"))
        for asset in decode_assets(data)
    ]
    return sorted(teams, key=lambda t: t.name.lower())


def fetch_statuses(client: AgilityClient, team_id: str) -> list[StatusInfo]:
    """Return the StoryStatus values of a team, in server order."""
    data = client.get("/Data/StoryStatus", params={
        "select": "Name,Order,ColorName",
        "where": f"Team='Team:{team_id}'",
        "sort": "Order",
    })
    statuses = []
    for asset in decode_assets(data):
        attrs = asset.attrs()
        statuses.append(StatusInfo(
            id=asset.asset_id,
            name=str(attrs.get("Name") or "Unknown"),
            order=_as_int(attrs.get("Order")),
            color_name=str(attrs["ColorName"]) if attrs.get("ColorName") else None,
        ))
    return statuses


def _as_int(value: Any) -> int:
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return 0


# --- tickets ---


def _fetch_workitems(client: AgilityClient, where: str) -> list[TicketData]:
    data = client.get("/Data/PrimaryWorkitem", params={
        "where": where,
        "select": TICKET_FIELDS,
        "sort": "-ChangeDate",
    })
    return map_assets_to_tickets(decode_assets(data), client.instance_url)


def fetch_tickets_by_member(client: AgilityClient, member_id: str) -> list[TicketData]:
    return _fetch_workitems(client, f"Owners='Member:{member_id}'")


def fetch_tickets_by_team(client: AgilityClient, team_id: str) -> list[TicketData]:
    return _fetch_workitems(client, f"Team='Team:{team_id}'")


def fetch_ticket_by_number(client: AgilityClient, number: str) -> TicketData:
    """Look up a single workitem by its display number (e.g. S-01234)."""
    tickets = _fetch_workitems(client, f"Number='{number}'")
    if not tickets:
        raise NotFoundError("Ticket", number)
    return tickets[0]


def fetch_ticket_detail(client: AgilityClient, asset_id: str) -> dict[str, Any]:
    """Return the flattened attributes of one workitem, including its description."""
    data = client.get(f"/Data/PrimaryWorkitem/{asset_id}", params={"select": DETAIL_FIELDS})
    try:
        asset = RawAsset.model_validate(data)
    except ValidationError as e:
        raise ApiError(f"Malformed ticket detail for {asset_id}") from e
    return asset.attrs()


# --- status transition ---


def _relation_status_xml(status_id: str, owner_id: str | None) -> str:
    xml = (
        "<Asset>\n"
        '  <Relation name="Status" act="set">\n'
        f'    <Asset idref="StoryStatus:{status_id}" />\n'
        "  </Relation>"
    )
    if owner_id:
        xml += (
            "\n"
            '  <Relation name="Owners">\n'
            f'    <Asset idref="Member:{owner_id}" act="add" />\n'
            "  </Relation>"
        )
    return xml + "\n</Asset>"


def _attribute_status_xml(status_id: str) -> str:
    return (
        "<Asset>\n"
        f'  <Attribute name="Status" act="set">StoryStatus:{status_id}</Attribute>\n'
        "</Asset>"
    )


def update_ticket_status(
    client: AgilityClient,
    ticket_id: str,
    status_id: str,
    asset_type: str,
    owner_id: str | None = None,
) -> None:
    """Move a Story/Defect to *status_id*, optionally adding *owner_id* as an owner.

    Older servers reject the relation-shaped payload with HTTP 400; in that case
    one retry is made with the flat attribute shape (status only). Any other
    failure, or a failed retry, raises ApiError.
    """
    endpoint = "Defect" if asset_type == "Defect" else "Story"
    path = f"/Data/{endpoint}/{ticket_id}"
    try:
        client.post_xml(path, _relation_status_xml(status_id, owner_id))
    except ApiError as e:
        if e.status_code != 400:
            raise ApiError("Failed to update ticket status", e.status_code, e.response_body) from e
        logger.info("Relation payload rejected for %s %s, retrying with attribute payload", endpoint, ticket_id)
        try:
            client.post_xml(path, _attribute_status_xml(status_id))
        except ApiError as fallback:
            raise ApiError(
                "Failed to update ticket status (fallback)",
                fallback.status_code,
                fallback.response_body,
            ) from fallback
    logger.info("%s %s moved to StoryStatus:%s", endpoint, ticket_id, status_id)
