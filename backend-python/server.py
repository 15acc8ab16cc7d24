"""
Markov Cohort Model - HTTP Backend
Flask server exposing cohort model runs and one-way sensitivity analysis
Enhanced with: Input Validation, Caching, Error Handling

Endpoints:
- /run          Cohort trace, survival, prevalence and discounted totals
- /sensitivity  One-way sensitivity analysis (tornado table)
- /absorption   Absorbing chain analysis of the transition matrix
"""

import logging
import os
from datetime import datetime

from flask import Flask, request, jsonify
from flask_cors import CORS

# Internal modules
from config import Config
from exceptions import MarkovModelError, ModelEvaluationError
from validators import validate_run_request, validate_sensitivity_request
from cache_manager import cache
from markov_model import ModelParameters, PARAMETER_SYMBOLS
from cohort_model import cohort_model
from reporting import tornado_table, frame_to_records

logger = logging.getLogger(__name__)

app = Flask(__name__)
CORS(app)

# Transition probabilities are the default sensitivity targets
DEFAULT_SENSITIVITY_TARGETS = ["p.HD", "p.HS", "p.SD"]


# ============================================
# ERROR HANDLERS
# ============================================

@app.errorhandler(MarkovModelError)
def handle_model_error(error):
    """Handle custom application errors"""
    logger.info("[API] %s: %s", error.__class__.__name__, error.message)
    response = jsonify(error.to_dict())
    response.status_code = error.status_code
    return response


@app.errorhandler(404)
def not_found(error):
    return jsonify({"error": "Endpoint not found", "status_code": 404}), 404


@app.errorhandler(405)
def method_not_allowed(error):
    return jsonify({"error": "Method not allowed", "status_code": 405}), 405


@app.errorhandler(500)
def internal_error(error):
    return jsonify({"error": "Internal server error", "status_code": 500}), 500


# ============================================
# MODEL ENDPOINTS
# ============================================

@app.route('/states', methods=['GET'])
def list_states():
    """Ordered health states of the model"""
    return jsonify({
        "states": list(cohort_model.state_space.names),
        "death_state": cohort_model.state_space.death_state
    })


@app.route('/parameters/default', methods=['GET'])
def default_parameters():
    """Canonical base-case parameters and their literature symbols"""
    return jsonify({
        "parameters": ModelParameters.canonical().to_dict(),
        "symbols": PARAMETER_SYMBOLS,
        "default_sensitivity_targets": DEFAULT_SENSITIVITY_TARGETS
    })


@app.route('/run', methods=['POST'])
def run_model():
    """
    Run the cohort model.
    Body: {"parameters": {"p.SD": 0.2, "n_cycles": 40, ...}} (missing fields take base-case values)
    """
    try:
        validated = validate_run_request(request.get_json(silent=True))
        params = ModelParameters.from_dict(validated["parameters"])
        return jsonify(cohort_model.run(params))
    except MarkovModelError:
        raise
    except Exception as e:
        logger.exception("[API] Model run failed")
        raise ModelEvaluationError(f"Model run failed: {str(e)}")


@app.route('/sensitivity', methods=['POST'])
def run_sensitivity():
    """
    One-way sensitivity analysis.
    Body: {"parameters": {...}, "ranges": {"p.SD": [0.05, 0.2]}, "outcome": "total_cost", "sort": false}
    """
    try:
        validated = validate_sensitivity_request(request.get_json(silent=True))
        base_case = ModelParameters.from_dict(validated["parameters"])
        ranges = validated["ranges"]

        table = cohort_model.sensitivity(
            base_case, list(ranges), ranges, outcome=validated["outcome"]
        )
        frame = tornado_table(table, sort_by_swing=validated["sort"])

        return jsonify({
            "outcome": table.outcome,
            "base_outcome": table.base_outcome,
            "base_case": base_case.to_dict(),
            "sorted_by_swing": validated["sort"],
            "rows": frame_to_records(frame),
            "timestamp": datetime.now().isoformat()
        })
    except MarkovModelError:
        raise
    except Exception as e:
        logger.exception("[API] Sensitivity analysis failed")
        raise ModelEvaluationError(f"Sensitivity analysis failed: {str(e)}")


@app.route('/absorption', methods=['POST'])
def absorption():
    """Expected cycles to absorption and absorption probabilities"""
    try:
        validated = validate_run_request(request.get_json(silent=True))
        params = ModelParameters.from_dict(validated["parameters"])
        return jsonify(cohort_model.absorption(params))
    except MarkovModelError:
        raise
    except Exception as e:
        logger.exception("[API] Absorption analysis failed")
        raise ModelEvaluationError(f"Absorption analysis failed: {str(e)}")


# ============================================
# CACHE
# ============================================

@app.route('/cache/clear', methods=['POST'])
def clear_cache():
    """Clear all cached model evaluations."""
    count = cache.clear()
    logger.info("[Cache] Cleared (%d entries removed)", count)
    return jsonify({
        "status": "cleared",
        "entries_removed": count
    })


@app.route('/cache/stats', methods=['GET'])
def cache_stats():
    """Get detailed cache statistics."""
    return jsonify(cache.get_stats())


@app.route('/health', methods=['GET'])
def health_check():
    """System health check"""
    return jsonify({
        "status": "healthy",
        "version": "1.0",
        "system": "Markov Cohort Model",
        "timestamp": datetime.now().isoformat(),
        "config": {
            "default_discount_rate": Config.DEFAULT_DISCOUNT_RATE,
            "default_cycles": Config.DEFAULT_CYCLES,
            "max_cycles": Config.MAX_CYCLES,
            "drift_tolerance": Config.DRIFT_TOLERANCE,
            "strict_drift": Config.STRICT_DRIFT,
            "sensitivity_workers": Config.SENSITIVITY_WORKERS
        },
        "cache": cache.get_stats()
    })


# ============================================
# MAIN
# ============================================

if __name__ == '__main__':
    logging.basicConfig(
        level=Config.LOG_LEVEL,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s"
    )

    logger.info("=" * 60)
    logger.info("  Markov Cohort Model Backend v1.0")
    logger.info("=" * 60)
    logger.info("  [+] Cache size:         %s", Config.CACHE_MAX_SIZE)
    logger.info("  [+] Max cycles:         %s", Config.MAX_CYCLES)
    logger.info("  [+] Drift tolerance:    %s (strict=%s)", Config.DRIFT_TOLERANCE, Config.STRICT_DRIFT)
    logger.info("  [+] Endpoints:          /run, /sensitivity, /absorption, /states")

    port = int(os.environ.get("PORT", Config.PORT))
    app.run(host="0.0.0.0", port=port, debug=Config.DEBUG)
