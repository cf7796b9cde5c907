"""
Seed script for the BidBridge marketplace.

Populates the database with demo data: posters, providers, open projects with
quotes, one assigned project and a conversation. Everything goes through the
core services so counters, sequences and notifications come out consistent.

Usage:
    python -m bidbridge.scripts.seed
"""

import asyncio
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from bidbridge.common.enums import UserRole
from bidbridge.common.logging import get_logger, setup_logging
from bidbridge.core.conversations.resolver import ConversationResolver
from bidbridge.core.engagement.schemas import ProjectCreate
from bidbridge.core.engagement.state_machine import EngagementStateMachine
from bidbridge.core.quotes.ledger import QuoteLedger
from bidbridge.core.quotes.schemas import QuoteInput
from bidbridge.db.models import User

logger = get_logger("scripts.seed")

ADMIN_EMAIL = "admin@bidbridge.io"

USERS = [
    ("admin@bidbridge.io", "BidBridge Admin", UserRole.ADMIN),
    ("maria@example.com", "Maria Gonzalez", UserRole.POSTER),
    ("james@example.com", "James Carter", UserRole.POSTER),
    ("ace@example.com", "Ace Roofing", UserRole.PROVIDER),
    ("bright@example.com", "Bright Electric", UserRole.PROVIDER),
    ("clear@example.com", "Clear Flow Plumbing", UserRole.PROVIDER),
]


async def main(session_factory: async_sessionmaker[AsyncSession] | None = None) -> bool:
    """Seed once; returns False when the admin account already exists."""
    if session_factory is None:
        from bidbridge.db.session import async_session_factory

        session_factory = async_session_factory

    machine = EngagementStateMachine()
    ledger = QuoteLedger()
    resolver = ConversationResolver()

    async with session_factory() as session:
        result = await session.execute(select(User).where(User.email == ADMIN_EMAIL))
        if result.scalar_one_or_none() is not None:
            logger.info("Database already seeded -- skipping.")
            return False

        # ==================================================================
        # USERS
        # ==================================================================
        users = {}
        for email, name, role in USERS:
            user = User(email=email, display_name=name, role=role.value)
            session.add(user)
            users[email] = user
        await session.commit()

        maria = users["maria@example.com"]
        james = users["james@example.com"]
        ace = users["ace@example.com"]
        bright = users["bright@example.com"]
        clear = users["clear@example.com"]

        # ==================================================================
        # PROJECTS + QUOTES
        # ==================================================================
        roof = await machine.create_project(
            session,
            maria.id,
            ProjectCreate(
                title="Replace storm-damaged roof shingles",
                description="About 400 sq ft on the north slope. Insurance claim approved.",
                budget=Decimal("6500.00"),
            ),
        )
        panel = await machine.create_project(
            session,
            james.id,
            ProjectCreate(
                title="Upgrade electrical panel to 200A",
                description="Old 100A panel, adding an EV charger next month.",
                budget=Decimal("3200.00"),
            ),
        )
        await machine.create_project(
            session,
            maria.id,
            ProjectCreate(title="Fix slow kitchen drain", budget=Decimal("250.00")),
        )

        await ledger.submit(
            session,
            roof.id,
            ace.id,
            QuoteInput(amount=Decimal("5900.00"), timeline_days=3, description="Tear-off and replace, 30-year shingles"),
        )
        panel_quote = await ledger.submit(
            session,
            panel.id,
            bright.id,
            QuoteInput(amount=Decimal("2950.00"), timeline_days=2, description="Panel swap including permit"),
        )
        await ledger.submit(
            session,
            panel.id,
            clear.id,
            QuoteInput(amount=Decimal("3400.00"), timeline_days=4, description="Panel plus whole-house surge protector"),
        )

        # ==================================================================
        # ASSIGNMENT + CONVERSATION
        # ==================================================================
        await machine.approve(session, panel.id, panel_quote.id, james.id)

        conversation = await resolver.resolve(session, panel.id, bright.id, james.id)
        await resolver.post_message(session, conversation.id, bright.id, "Thanks! Does Tuesday morning work?")
        await resolver.post_message(session, conversation.id, james.id, "Tuesday at 8 is perfect.")

    logger.info("Seeded %d users and 3 projects", len(USERS))
    return True


if __name__ == "__main__":
    setup_logging()
    asyncio.run(main())
