"""Map an assessment's guide_type to the diagnosis code used for content inserts."""

import logging

logger = logging.getLogger(__name__)

GENERIC_DIAGNOSIS = "generic"

# Guide types needing immediate in-person care; no automated check-ins are scheduled.
URGENT_GUIDE_TYPES = frozenset({"urgent_symptoms"})

DIAGNOSIS_MAP: dict[str, str] = {
    "facet_arthropathy": "facet_arthropathy",
    "lumbar_instability": "lumbar_instability",
    "muscular_nslbp": "nonspecific_lbp",
    "sciatica": "sciatica",
    "upper_lumbar_radiculopathy": "upper_lumbar_radiculopathy",
    "si_joint_dysfunction": "si_joint_dysfunction",
    "canal_stenosis": "canal_stenosis",
    "central_disc_bulge": "central_disc_bulge",
}


def resolve_diagnosis_code(guide_type: str | None) -> str:
    key = (guide_type or "").strip().lower()
    if not key:
        return GENERIC_DIAGNOSIS
    code = DIAGNOSIS_MAP.get(key)
    if code is None:
        logger.info("Diagnosis: unknown guide_type %r, using generic", key)
        return GENERIC_DIAGNOSIS
    return code


def is_urgent_guide_type(guide_type: str | None) -> bool:
    return (guide_type or "").strip().lower() in URGENT_GUIDE_TYPES
