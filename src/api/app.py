"""
Quart application exposing the scan and moderation lookup endpoints.
"""
import logging
from datetime import datetime, timezone
from typing import Optional

from pydantic import ValidationError as PydanticValidationError
from quart import Quart, jsonify, request
from quart_cors import cors

from core.errors import ConfigurationError, ProviderError, ValidationError
from core.schemas import BatchModerationRequest, MAX_BATCH_LOOKUP_IDS
from core.scoring import Thresholds, flag, normalize_scores
from services.config import load_config
from workflows.scan_factory import create_orchestrator
from workflows.scan_orchestrator import ScanOrchestrator

logger = logging.getLogger(__name__)

# Initialize app
app = Quart(__name__)
app = cors(app)

# Initialize services
orchestrator: Optional[ScanOrchestrator] = None


def get_orchestrator() -> ScanOrchestrator:
    """Get or create the ScanOrchestrator instance."""
    global orchestrator
    if orchestrator is None:
        orchestrator = create_orchestrator(load_config())
    return orchestrator


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


def _parse_fid(raw: Optional[str]) -> int:
    if not raw:
        raise ValidationError("Missing FID parameter")
    try:
        fid = int(raw)
    except ValueError:
        raise ValidationError("Invalid FID format")
    if fid <= 0:
        raise ValidationError("Invalid FID format")
    return fid


def _parse_threshold(name: str) -> Optional[float]:
    raw = request.args.get(name)
    if raw is None or raw == "":
        return None
    try:
        return float(raw)
    except ValueError:
        raise ValidationError(f"Invalid threshold for {name}: {raw!r}")


def _request_thresholds(base: Thresholds) -> Thresholds:
    """Apply ?spam= and ?ai= overrides to the configured thresholds."""
    try:
        return base.override(
            spam=_parse_threshold("spam"),
            ai_generated=_parse_threshold("ai"),
        )
    except PydanticValidationError:
        raise ValidationError("Thresholds must be between 0 and 1")


@app.errorhandler(ValidationError)
async def handle_validation_error(error: ValidationError):
    return jsonify({"error": str(error)}), 400


@app.errorhandler(ConfigurationError)
async def handle_configuration_error(error: ConfigurationError):
    logger.error(f"Configuration error: {error}")
    return jsonify({"error": str(error), "timestamp": _timestamp()}), 500


# ==================== Routes ====================

@app.route('/api/health')
async def health():
    """Liveness check."""
    return jsonify({"status": "ok", "timestamp": _timestamp()})


@app.route('/api/scan-following')
async def scan_following():
    """
    Start or poll the scan of an identity's following list.
    Pass rescan=true to replace a finished scan with a new one.
    """
    fid = _parse_fid(request.args.get('fid'))
    scanner = get_orchestrator()
    thresholds = _request_thresholds(scanner.thresholds)
    thresholds = None if thresholds == scanner.thresholds else thresholds

    if request.args.get('rescan', '').lower() in ("1", "true", "yes"):
        await scanner.start_scan(fid, thresholds)
        return jsonify(scanner.poll(fid))

    return jsonify(await scanner.request_scan(fid, thresholds))


@app.route('/api/followers')
async def followers():
    """Every account the identity follows, unscored."""
    fid = _parse_fid(request.args.get('fid'))
    logger.info(f"Fetching all following for FID {fid}")

    try:
        accounts = await get_orchestrator().fetcher.fetch_all_following(fid)
    except ValidationError:
        raise
    except ProviderError as e:
        logger.error(f"Following fetch failed for FID {fid}: {e}")
        return jsonify({"error": str(e), "timestamp": _timestamp()}), 500

    return jsonify({"users": [account.to_dict() for account in accounts]})


@app.route('/api/user-moderation')
async def user_moderation():
    """Raw moderation scores for a single identity."""
    fid = _parse_fid(request.args.get('fid'))
    moderation = get_orchestrator().moderation

    results = await moderation.score([fid])
    scores = results.get(str(fid))
    if scores is None:
        return jsonify({
            "message": f"No moderation data found for FID {fid}",
            "timestamp": _timestamp(),
        }), 404

    return jsonify({
        "fid": fid,
        "timestamp": _timestamp(),
        "moderationData": scores,
        "meta": {
            "provider": moderation.url,
            "labelCategory": "moderation",
        },
    })


@app.route('/api/user-moderation/batch', methods=['POST'])
async def batch_moderation():
    """Moderation scores for up to 50 identities."""
    body = await request.get_json(silent=True)
    if not isinstance(body, dict):
        return jsonify({"error": "Request body must be a JSON object"}), 400

    try:
        lookup = BatchModerationRequest.model_validate(body)
    except PydanticValidationError as e:
        logger.info(f"Rejected batch moderation request: {e.error_count()} errors")
        return jsonify({
            "error": f'Request body must include a non-empty "identityIds" array of at most '
                     f'{MAX_BATCH_LOOKUP_IDS} numeric IDs',
        }), 400

    logger.info(f"Processing batch moderation request for {len(lookup.identity_ids)} IDs")

    try:
        results = await get_orchestrator().moderation.score(lookup.identity_ids, skip_cache=lookup.skip_cache)
    except ConfigurationError:
        raise
    except Exception as e:
        logger.exception(f"Batch moderation lookup failed: {e}")
        return jsonify({"error": "Moderation lookup failed", "timestamp": _timestamp()}), 500

    return jsonify({
        "timestamp": _timestamp(),
        "count": len(results),
        "results": results,
        "meta": {
            "requestedIds": len(lookup.identity_ids),
            "cacheUsed": not lookup.skip_cache,
        },
    })


@app.route('/api/user-flags')
async def user_flags():
    """Flags, scores and thresholds for a single identity."""
    fid = _parse_fid(request.args.get('fid'))
    scanner = get_orchestrator()
    thresholds = _request_thresholds(scanner.thresholds)

    results = await scanner.moderation.score([fid])
    scores = results.get(str(fid))
    if scores is None:
        return jsonify({
            "message": f"No moderation data found for FID {fid}",
            "timestamp": _timestamp(),
        }), 404

    return jsonify({
        "fid": fid,
        "timestamp": _timestamp(),
        "flags": flag(scores, thresholds).to_dict(),
        "scores": normalize_scores(scores),
        "thresholds": thresholds.model_dump(),
    })
