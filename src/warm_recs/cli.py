import argparse
import asyncio
import json
import logging

from .config import DEFAULT_LIMIT, MAX_LIMIT, NEYNAR_API_KEY
from .errors import GraphAPIError, InvalidRequestError
from .graph_client import NeynarClient
from .metrics import RecommendationMetrics
from .profile_cache import ProfileEnrichmentCache
from .recommender import WarmRecommender, recommend_response, validate_seed_id
from .relationships import analyze_one_way, fetch_all

logger = logging.getLogger(__name__)


def _make_client() -> NeynarClient:
    return NeynarClient(api_key=NEYNAR_API_KEY)


def _has_api_key() -> bool:
    if not NEYNAR_API_KEY:
        logger.error("NEYNAR_API_KEY is not set. Export it before running this command.")
        return False
    return True


def _output_recommendations(payload: dict, output_format: str) -> None:
    """Log a recommend payload as text or JSON."""
    if output_format == 'json':
        logger.info(json.dumps(payload, indent=2))
        return

    if not payload.get("success"):
        logger.error(f"Failed: {payload.get('message')}")
        return

    recs = payload["recommendations"]
    if payload.get("message"):
        logger.info(payload["message"])

    logger.info(f"\nTop {len(recs)} warm recommendations for {payload['seed_id']}:")
    for i, r in enumerate(recs, 1):
        logger.info(f"{i}. @{r['handle']} ({r['display_name']}) - {r['mutual_count']} mutuals, "
                    f"{r['follower_count']:,} followers - Score: {r['score']:.1f}")
        if r.get("bio"):
            logger.info(f"   {r['bio'][:120]}")

    debug = payload.get("debug")
    if debug:
        logger.info(f"\n{'=' * 50}")
        logger.info("Debug:")
        for key, value in debug.items():
            logger.info(f"  {key}: {value}")


async def _recommend_async(args: argparse.Namespace) -> dict:
    metrics = RecommendationMetrics()
    async with _make_client() as client:
        cache = ProfileEnrichmentCache(client.fetch_profile, metrics=metrics)
        recommender = WarmRecommender(client, cache, metrics=metrics, progress=args.progress)
        return await recommend_response(
            recommender, args.fid, limit=args.limit, deep=args.deep, debug=args.debug,
        )


def cmd_recommend(args: argparse.Namespace) -> None:
    """Generate warm recommendations for a seed user."""
    if not _has_api_key():
        return
    payload = asyncio.run(_recommend_async(args))
    _output_recommendations(payload, args.format)


async def _one_way_async(fid: int) -> dict:
    async with _make_client() as client:
        following = await fetch_all(client.fetch_following, fid)
        followers = await fetch_all(client.fetch_followers, fid)

    analysis = analyze_one_way(following.users, followers.users)
    payload = analysis.to_dict()
    payload.update({
        "fid": fid,
        "following_count": len(following.users),
        "follower_count": len(followers.users),
        "is_complete": following.is_complete and followers.is_complete,
    })
    return payload


def cmd_one_way(args: argparse.Namespace) -> None:
    """Show accounts that don't follow back and followers not followed back."""
    if not _has_api_key():
        return
    try:
        fid = validate_seed_id(args.fid)
        payload = asyncio.run(_one_way_async(fid))
    except (InvalidRequestError, GraphAPIError) as exc:
        logger.error(f"One-way analysis failed: {exc}")
        return

    if args.format == 'json':
        logger.info(json.dumps(payload, indent=2))
        return

    logger.info(f"\nOne-way analysis for {fid}:")
    logger.info(f"  Following: {payload['following_count']:,}")
    logger.info(f"  Followers: {payload['follower_count']:,}")
    logger.info(f"  Mutual: {payload['mutual_count']:,}")
    if not payload["is_complete"]:
        logger.warning("  Lists are incomplete (page cap or fetch error)")

    logger.info(f"\nYou follow, they don't follow back ({len(payload['one_way_out'])}):")
    for user in payload["one_way_out"][:args.limit]:
        logger.info(f"  @{user['handle']} - {user['follower_count']:,} followers")

    logger.info(f"\nThey follow you, you don't follow back ({len(payload['one_way_in'])}):")
    for user in payload["one_way_in"][:args.limit]:
        logger.info(f"  @{user['handle']} - {user['follower_count']:,} followers")


async def _profile_async(fid: int):
    async with _make_client() as client:
        return await client.fetch_profile(fid)


def cmd_profile(args: argparse.Namespace) -> None:
    """Show a single user's profile."""
    if not _has_api_key():
        return
    try:
        fid = validate_seed_id(args.fid)
        profile = asyncio.run(_profile_async(fid))
    except (InvalidRequestError, GraphAPIError) as exc:
        logger.error(f"Profile lookup failed: {exc}")
        return

    logger.info(f"@{profile.handle} ({profile.display_name}) [fid {profile.id}]")
    logger.info(f"  Followers: {profile.follower_count:,}  Following: {profile.following_count:,}")
    if profile.bio:
        logger.info(f"  Bio: {profile.bio}")


def main():
    parser = argparse.ArgumentParser(description="Warm account recommendations for Farcaster")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable verbose logging")
    subparsers = parser.add_subparsers(dest="command", required=True)

    # Recommend command
    rec_parser = subparsers.add_parser("recommend", help="Recommend accounts followed by people you follow")
    rec_parser.add_argument("fid", help="Seed user FID")
    rec_parser.add_argument("--limit", type=int, default=DEFAULT_LIMIT,
                            help=f"Number of recommendations (1-{MAX_LIMIT})")
    rec_parser.add_argument("--deep", action="store_true",
                            help="Deep analysis: more pages, all accounts, 2+ mutuals")
    rec_parser.add_argument("--debug", action="store_true", help="Include debug statistics")
    rec_parser.add_argument("--progress", action="store_true", help="Show a traversal progress bar")
    rec_parser.add_argument("--format", choices=['text', 'json'], default='text', help="Output format")
    rec_parser.set_defaults(func=cmd_recommend)

    # One-way command
    one_way_parser = subparsers.add_parser("one-way", help="Analyze one-way follow relationships")
    one_way_parser.add_argument("fid", help="User FID")
    one_way_parser.add_argument("--limit", type=int, default=25, help="Max users listed per direction (text output)")
    one_way_parser.add_argument("--format", choices=['text', 'json'], default='text', help="Output format")
    one_way_parser.set_defaults(func=cmd_one_way)

    # Profile command
    profile_parser = subparsers.add_parser("profile", help="Show a user's profile")
    profile_parser.add_argument("fid", help="User FID")
    profile_parser.set_defaults(func=cmd_profile)

    args = parser.parse_args()

    # Configure logging based on verbosity
    log_level = logging.DEBUG if args.verbose else logging.INFO
    logging.basicConfig(
        level=log_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    args.func(args)


if __name__ == "__main__":
    main()
