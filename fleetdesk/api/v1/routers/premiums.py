from fastapi import APIRouter, Depends

from fleetdesk.api import deps
from fleetdesk.schemas.pending import PremiumPreview, PremiumPreviewRequest
from fleetdesk.schemas.principals import Principal
from fleetdesk.services import premiums

router = APIRouter(prefix="/premiums", tags=["premiums"])


@router.post("/preview", response_model=PremiumPreview, summary="Preview premium and own risk")
async def preview_premium(
    payload: PremiumPreviewRequest,
    principal: Principal = Depends(deps.get_current_principal),
) -> PremiumPreview:
    return premiums.build_preview(
        payload.premium,
        payload.own_risk,
        payload.base_value,
        start=payload.insurance_start_date,
        end=payload.insurance_end_date,
    )
