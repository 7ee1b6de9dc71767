from dataclasses import dataclass

from fastapi import HTTPException, Request, status

from sentinela.models import AdminRole


@dataclass(frozen=True)
class Armorer:
    """Signed-in identity passed explicitly to every mutating service call."""

    id: int
    name: str
    matricula: str
    role: AdminRole

    @property
    def is_super_admin(self) -> bool:
        return self.role == AdminRole.SUPER_ADMIN


def get_current_armorer(request: Request) -> Armorer:
    armorer = getattr(request.state, 'armorer', None)
    if not armorer:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED)
    return armorer

