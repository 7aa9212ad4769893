"""Runpad - Package Routes

GET  /packages             installed packages from the manifest
POST /packages/install     install a distribution into the dependency store
POST /packages/uninstall   remove it again

Failures are reported in the body ({success: false, error}) rather than
as HTTP errors, so the shell always gets a result object.
"""

import logging
from typing import Dict, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from runpad.session import Session, get_session

logger = logging.getLogger(__name__)

router = APIRouter()


class PackageRequest(BaseModel):
    name: str = Field(..., description="Project name, optionally with a version clause (e.g. 'six', 'attrs>=23')")


class PackageResponse(BaseModel):
    success: bool
    error: Optional[str] = None


class PackageListResponse(BaseModel):
    success: bool
    packages: Optional[Dict[str, str]] = None
    error: Optional[str] = None


@router.get("/packages", response_model=PackageListResponse, response_model_exclude_none=True)
async def list_packages(session: Session = Depends(get_session)):
    return PackageListResponse(**await session.get_packages())


@router.post("/packages/install", response_model=PackageResponse, response_model_exclude_none=True)
async def install_package(request: PackageRequest, session: Session = Depends(get_session)):
    logger.info(f"install_package: {request.name}")
    return PackageResponse(**await session.install_package(request.name))


@router.post("/packages/uninstall", response_model=PackageResponse, response_model_exclude_none=True)
async def uninstall_package(request: PackageRequest, session: Session = Depends(get_session)):
    logger.info(f"uninstall_package: {request.name}")
    return PackageResponse(**await session.uninstall_package(request.name))
