from fastapi import APIRouter

from .endpoints import fhir, hl7, systems

api_router = APIRouter()

api_router.include_router(hl7.router, tags=["HL7 v2"])
api_router.include_router(fhir.router, tags=["FHIR R4"])
api_router.include_router(systems.router, tags=["External Systems"])
