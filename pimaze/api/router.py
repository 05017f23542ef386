"""
FastAPI Router for the PiMaze game client
"""

from fastapi import APIRouter

# Import sub-routers
from pimaze.api.profile import router as profile_router
from pimaze.api.rewards import router as rewards_router
from pimaze.api.consumables import router as consumables_router
from pimaze.api.monthly import router as monthly_router
from pimaze.api.sessions import router as sessions_router


# Main router
router = APIRouter()

# Include sub-routers (they already carry their prefixes)
router.include_router(profile_router)  # Pi login, /me, username
router.include_router(rewards_router)  # Idempotent coin rewards
router.include_router(consumables_router)  # Skip / hint / restart
router.include_router(monthly_router)  # Payout rate and monthly payouts
router.include_router(sessions_router)  # Online presence
