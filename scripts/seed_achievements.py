"""
Script to seed the default achievement catalog into the database.
Run with: python -m scripts.seed_achievements [--force]
"""

import asyncio
import sys
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from scoreboard.core.database import async_session_maker, init_db
from scoreboard.services.achievement_seeder import generate_default_achievements, seed_achievements


async def run(force: bool = False):
    """Create tables if needed and insert the default achievements."""
    await init_db()

    achievements = generate_default_achievements()
    print(f"Generated {len(achievements)} achievement definitions.")

    async with async_session_maker() as session:
        created = await seed_achievements(session, force=force)

    if created:
        print(f"Inserted {created} new achievements.")
    else:
        print("Catalog already up to date. Use --force to refresh existing definitions.")

    # Summary by type
    type_counts: dict[str, int] = {}
    for a in achievements:
        type_counts[a["type"]] = type_counts.get(a["type"], 0) + 1
    print("\nSummary by type:")
    for kind, count in sorted(type_counts.items()):
        print(f"  {kind}: {count}")


def main():
    force = "--force" in sys.argv
    asyncio.run(run(force))


if __name__ == "__main__":
    main()
