from __future__ import annotations

from fastapi import APIRouter

from . import workbench

router = APIRouter()
router.include_router(workbench.router)
