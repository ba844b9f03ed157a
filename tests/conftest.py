# tests/conftest.py
import asyncio
import sys

import pytest

from app.classroll.models.db_models import TeacherProfile
from app.classroll.models.redis_models import VerifiedPrincipal

# Windows asyncio needs the selector loop under pytest.
if sys.platform == "win32":
    asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())


@pytest.fixture
def principal() -> VerifiedPrincipal:
    """A verified teacher identity."""
    return VerifiedPrincipal(uid="uid-ada", email="ada@college.edu", name="Ada Lovelace")


@pytest.fixture
def profile(principal) -> TeacherProfile:
    """An empty profile for the `principal` teacher."""
    return TeacherProfile(firebase_uid=principal.uid, email=principal.email, name=principal.name)


@pytest.fixture
def stocked_profile(profile) -> TeacherProfile:
    """A profile with BCA sem 3 'DBMS' in the catalog and queued."""
    profile.add_subject("bca", 3, "dbms")
    profile.enqueue("BCA", 3, "DBMS")
    return profile
