from __future__ import annotations

from pydantic import BaseModel


class LoginIn(BaseModel):
    name: str
    matricula: str


class MaterialIn(BaseModel):
    name: str
    category: str = ''
    total_quantity: int = 0


class MaterialUpdateIn(BaseModel):
    name: str | None = None
    category: str | None = None
    total_quantity: int | None = None


class PersonnelIn(BaseModel):
    name: str
    registration_number: str
    rank: str = ''


class PersonnelUpdateIn(BaseModel):
    name: str | None = None
    registration_number: str | None = None
    rank: str | None = None


class CautelaItemIn(BaseModel):
    material_id: int
    quantity: int


class CautelaIn(BaseModel):
    personnel_id: int
    items: list[CautelaItemIn]


class CautelaReturnIn(BaseModel):
    # Omitted: return everything still outstanding.
    items: list[CautelaItemIn] | None = None


class SettingsIn(BaseModel):
    institution_name: str
    institution_logo: str | None = None


class AdminIn(BaseModel):
    name: str
    matricula: str
