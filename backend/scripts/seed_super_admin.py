"""
Create or promote the platform super admin.

Usage:
    python scripts/seed_super_admin.py admin@carenote.dk "Admin Name" 'Passw0rd!'

An existing user with the email is promoted (password untouched); otherwise a
verified, active super admin without a subscription is created.
"""

import argparse
import asyncio
import logging
import sys
import uuid

from sqlalchemy import select

from carenote.database import async_session_factory, dispose_engine
from carenote.models.user import ROLE_SUPER_ADMIN, User
from carenote.schemas.auth import check_password_strength
from carenote.security import hash_password

logger = logging.getLogger("carenote.seed")


async def seed(email: str, name: str, password: str) -> User:
    async with async_session_factory() as session:
        result = await session.execute(select(User).where(User.email == email.strip().lower()))
        user = result.scalar_one_or_none()
        if user is not None:
            user.role = ROLE_SUPER_ADMIN
            user.is_active = True
            user.email_verified = True
            logger.info("Promoted existing user %s to super admin", user.id)
        else:
            user = User(
                id=uuid.uuid4(),
                email=email,
                name=name,
                password_hash=hash_password(password),
                role=ROLE_SUPER_ADMIN,
                email_verified=True,
                is_active=True,
            )
            session.add(user)
            logger.info("Created super admin %s", email)
        await session.commit()
        return user


def main() -> int:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[1])
    parser.add_argument("email")
    parser.add_argument("name")
    parser.add_argument("password")
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(levelname)s] %(name)s: %(message)s")
    try:
        check_password_strength(args.password)
    except ValueError as e:
        logger.error(str(e))
        return 1

    async def _run() -> None:
        try:
            await seed(args.email, args.name, args.password)
        finally:
            await dispose_engine()

    asyncio.run(_run())
    return 0


if __name__ == "__main__":
    sys.exit(main())
