"""
Member API Router

Endpoints for listing, exporting, importing, creating and editing members
and for the Keycloak reconciliation run. All endpoints require the member
administration role.
"""

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response, status
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from mitgliederverwaltung.auth.dependencies import require_member_admin
from mitgliederverwaltung.core.config import Settings, get_settings
from mitgliederverwaltung.core.database import get_db
from mitgliederverwaltung.core.exceptions import MitgliederError
from mitgliederverwaltung.keycloak.context import KeycloakContext, get_keycloak
from mitgliederverwaltung.keycloak.groups import KeycloakGroupClient
from mitgliederverwaltung.keycloak.users import KeycloakUserClient
from mitgliederverwaltung.members.export import (
    CsvOptions,
    export_fields,
    parse_bool_param,
    render_csv,
    sanitize_filename,
)
from mitgliederverwaltung.members.fields import EDITABLE_FIELDS, parse_fields_param, parse_multi
from mitgliederverwaltung.members.importer import MemberImporter
from mitgliederverwaltung.members.reconciliation import ReconciliationEngine
from mitgliederverwaltung.members.schemas import (
    GroupSyncResponse,
    ImportRequest,
    ImportSummary,
    MemberCreate,
    MemberDetailResponse,
    MemberListResponse,
    MemberResponse,
    MemberUpdate,
    MemberUpdateResponse,
    ReferenceOption,
    SyncSummary,
)
from mitgliederverwaltung.members.store import MemberStore

router = APIRouter(
    prefix="/mitglieder",
    tags=["mitglieder"],
    dependencies=[Depends(require_member_admin)],
)


# =============================================================================
# Helper Functions
# =============================================================================


def get_store(db: AsyncSession = Depends(get_db)) -> MemberStore:
    return MemberStore(db)


def get_engine(
    store: MemberStore = Depends(get_store),
    keycloak: KeycloakContext = Depends(get_keycloak),
    settings: Settings = Depends(get_settings),
) -> ReconciliationEngine:
    return ReconciliationEngine(
        store,
        KeycloakUserClient(keycloak),
        KeycloakGroupClient(keycloak),
        placeholder_domain=settings.mail_placeholder_domain or None,
    )


def to_http_error(error: MitgliederError) -> HTTPException:
    return HTTPException(status_code=error.status_code, detail=error.message)


def parse_member_id(raw: str) -> int:
    try:
        member_id = int(raw)
    except ValueError:
        member_id = 0
    if member_id <= 0:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Ungültige ID",
        )
    return member_id


# =============================================================================
# Listing, Export & Import
# =============================================================================


@router.get("", response_model=MemberListResponse)
async def list_members(
    fields: str | None = None,
    gruppe: str | None = None,
    status_filter: str | None = Query(None, alias="status"),
    hvm: str | None = None,
    meta: str | None = None,
    store: MemberStore = Depends(get_store),
) -> MemberListResponse:
    """List members with the selected columns."""
    selected = parse_fields_param(fields)
    data = await store.list_members(
        selected,
        gruppe=parse_multi(gruppe),
        status=parse_multi(status_filter),
        hvm=hvm,
    )
    response = MemberListResponse(fields=selected, data=data)
    if meta == "1":
        response.status_options = [ReferenceOption.model_validate(o) for o in await store.status_options()]
        response.group_options = [ReferenceOption.model_validate(o) for o in await store.group_options()]
    return response


@router.get("/export")
async def export_members(
    fields: str | None = None,
    preset: str | None = None,
    include_id: str | None = Query(None, alias="includeId"),
    delim: str | None = None,
    quote: str | None = None,
    lbmark: str | None = None,
    gruppe: str | None = None,
    status_filter: str | None = Query(None, alias="status"),
    hvm: str | None = None,
    filename: str | None = None,
    store: MemberStore = Depends(get_store),
) -> Response:
    """Download members as CSV."""
    selected = export_fields(fields, preset, parse_bool_param(include_id))
    rows = await store.list_members(
        selected,
        gruppe=parse_multi(gruppe),
        status=parse_multi(status_filter),
        hvm=hvm,
    )
    body = render_csv(selected, rows, CsvOptions.from_params(delim, quote, lbmark))
    return Response(
        content=body.encode("utf-8"),
        media_type="text/csv; charset=utf-8",
        headers={
            "Content-Disposition": f'attachment; filename="{sanitize_filename(filename)}.csv"',
            "Cache-Control": "no-store",
        },
    )


@router.post("/import", response_model=ImportSummary)
async def import_members(
    request: Request,
    delim: str | None = None,
    store: MemberStore = Depends(get_store),
) -> ImportSummary:
    """
    Upsert members from CSV.

    The CSV is sent as the raw body (``text/csv``) or as JSON
    ``{"csv": "..."}``. ``delim`` defaults to ``;``; ``tab`` selects a tab.
    """
    body = await request.body()
    if request.headers.get("content-type", "").startswith("application/json"):
        try:
            text = ImportRequest.model_validate_json(body).csv
        except ValidationError as e:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="CSV-Text im Feld 'csv' erwartet",
            ) from e
    else:
        try:
            text = body.decode("utf-8")
        except UnicodeDecodeError as e:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="CSV muss UTF-8 kodiert sein",
            ) from e

    try:
        return await MemberImporter(store).run(text, CsvOptions.from_params(delim, None, None).delimiter)
    except MitgliederError as e:
        raise to_http_error(e) from e


# =============================================================================
# Reconciliation
# =============================================================================


@router.post("/sync-emails", response_model=SyncSummary)
async def sync_members(
    engine: ReconciliationEngine = Depends(get_engine),
) -> SyncSummary:
    """Reconcile all members with Keycloak. Always answers 200 with a summary."""
    return await engine.sync_all()


# =============================================================================
# Single Member
# =============================================================================


@router.post("", response_model=MemberResponse, status_code=status.HTTP_201_CREATED)
async def create_member(
    payload: MemberCreate,
    engine: ReconciliationEngine = Depends(get_engine),
) -> MemberResponse:
    """Create a member and its Keycloak account."""
    try:
        person = await engine.create_member(payload.model_dump(exclude_unset=True))
    except MitgliederError as e:
        raise to_http_error(e) from e
    return MemberResponse.model_validate(person)


@router.get("/{member_id}", response_model=MemberDetailResponse)
async def get_member(
    member_id: str,
    store: MemberStore = Depends(get_store),
) -> MemberDetailResponse:
    """Get a member with the edit metadata."""
    person = await store.get(parse_member_id(member_id))
    if not person:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Nicht gefunden",
        )
    return MemberDetailResponse(
        data=MemberResponse.model_validate(person),
        editable=list(EDITABLE_FIELDS),
        status_options=[ReferenceOption.model_validate(o) for o in await store.status_options()],
        group_options=[ReferenceOption.model_validate(o) for o in await store.group_options()],
    )


@router.patch("/{member_id}", response_model=MemberUpdateResponse)
async def update_member(
    member_id: str,
    payload: MemberUpdate,
    engine: ReconciliationEngine = Depends(get_engine),
) -> MemberUpdateResponse:
    """Update a member; a changed ``gruppe`` is synced to Keycloak."""
    parsed_id = parse_member_id(member_id)
    try:
        result = await engine.update_member(parsed_id, payload.model_dump(exclude_unset=True))
    except MitgliederError as e:
        raise to_http_error(e) from e
    return MemberUpdateResponse(
        data=MemberResponse.model_validate(result.member),
        group_sync=GroupSyncResponse.from_result(result.group_sync) if result.group_sync else None,
    )
