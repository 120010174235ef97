from typing import Any

from fastapi import APIRouter

from rowguard.api.deps import CurrentSubject

router = APIRouter(prefix="/me", tags=["me"])


@router.get("")
async def get_me(subject: CurrentSubject) -> dict[str, Any]:
    """The subject the current request resolved to."""
    return {
        **subject.to_dict(),
        "is_anonymous": subject.is_anonymous,
    }
