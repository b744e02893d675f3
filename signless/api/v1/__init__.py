# This file makes api.v1 a Python package
from fastapi import APIRouter

from .signless.index import router as signless_router

signless = APIRouter()
signless.include_router(signless_router)
