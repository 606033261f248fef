"""Flask API for decisions and experiments."""
import logging
import sys
from pathlib import Path

ROOT = Path(__file__).parent.parent.parent
sys.path.insert(0, str(ROOT))

from flask import Flask, jsonify, request
from werkzeug.exceptions import HTTPException

from src.config import EngineConfig
from src.decisioning.schema import DecisionRequest
from src.decisioning.service import DecisioningService
from src.errors import InvalidStateError, NotFoundError, ValidationError
from src.experimentation.schema import Experiment, ExperimentStatus, ExperimentType

logger = logging.getLogger(__name__)


def _json_body() -> dict:
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def _parse(factory, data):
    try:
        return factory(data)
    except ValidationError:
        raise
    except (TypeError, ValueError, KeyError, AttributeError) as e:
        raise ValidationError(f"Malformed payload: {e}") from e


def _decision_from_payload(data: dict, config: EngineConfig) -> DecisionRequest:
    data = dict(data)
    options = dict(data.get("options") or {})
    options.setdefault("max_recommendations", config.max_recommendations)
    options.setdefault("timeout", config.decision_timeout)
    data["options"] = options
    return DecisionRequest.from_dict(data)


def _experiment_from_payload(data: dict, config: EngineConfig) -> Experiment:
    data = dict(data)
    cfg = dict(data.get("configuration") or {})
    cfg.setdefault("confidence_level", config.confidence_level)
    cfg.setdefault("min_sample_size", config.min_sample_size)
    data["configuration"] = cfg
    for key in ("status", "start_date", "end_date", "stop_reason", "results"):
        data.pop(key, None)
    return Experiment.from_dict(data)


def create_app(service: DecisioningService = None) -> Flask:
    """
    Build the Flask app around a DecisioningService.

    Without a service, one is created from DECISIONING_* environment settings.
    """
    app = Flask(__name__)
    service = service or DecisioningService.from_config(EngineConfig.from_env())
    experiments = service.experimentation
    app.config["SERVICE"] = service

    @app.errorhandler(ValidationError)
    def handle_validation(e):
        return jsonify({"error": str(e)}), 400

    @app.errorhandler(NotFoundError)
    def handle_not_found(e):
        return jsonify({"error": str(e)}), 404

    @app.errorhandler(InvalidStateError)
    def handle_invalid_state(e):
        return jsonify({"error": str(e)}), 409

    @app.errorhandler(Exception)
    def handle_unexpected(e):
        if isinstance(e, HTTPException):
            return e
        logger.exception(f"Unhandled error on {request.path}")
        return jsonify({"error": str(e)}), 500

    @app.route("/ping", methods=["GET"])
    def ping():
        return "pong"

    @app.route("/decisions", methods=["POST"])
    def create_decision():
        config = service.decision_engine.config
        decision_request = _parse(lambda d: _decision_from_payload(d, config), _json_body())
        result = service.decide(decision_request)
        return jsonify(result.to_dict())

    @app.route("/decisions/<request_id>", methods=["GET"])
    def get_decision(request_id):
        result = service.get_decision(request_id)
        if result is None:
            raise NotFoundError(f"Decision not found: {request_id}")
        return jsonify(result.to_dict())

    @app.route("/experiments", methods=["POST"])
    def create_experiment():
        experiment = _parse(lambda d: _experiment_from_payload(d, experiments.config), _json_body())
        experiments.create_experiment(experiment)
        return jsonify(experiments.get_experiment(experiment.id).to_dict()), 201

    @app.route("/experiments", methods=["GET"])
    def list_experiments():
        status = request.args.get("status")
        exp_type = request.args.get("type")
        try:
            status = ExperimentStatus(status) if status else None
            exp_type = ExperimentType(exp_type) if exp_type else None
        except ValueError as e:
            raise ValidationError(str(e)) from e
        found = experiments.list_experiments(status=status, type=exp_type)
        return jsonify({"experiments": [e.to_dict() for e in found]})

    @app.route("/experiments/<experiment_id>", methods=["GET"])
    def get_experiment(experiment_id):
        experiment = experiments.get_experiment(experiment_id)
        if experiment is None:
            raise NotFoundError(f"Experiment not found: {experiment_id}")
        return jsonify(experiment.to_dict())

    @app.route("/experiments/<experiment_id>/<action>", methods=["POST"])
    def transition_experiment(experiment_id, action):
        if action == "start":
            experiments.start_experiment(experiment_id)
        elif action == "pause":
            experiments.pause_experiment(experiment_id)
        elif action == "resume":
            experiments.resume_experiment(experiment_id)
        elif action == "stop":
            data = request.get_json(silent=True) or {}
            experiments.stop_experiment(experiment_id, reason=data.get("reason") or "Manual stop")
        else:
            raise NotFoundError(f"Unknown action: {action}")
        return jsonify(experiments.get_experiment(experiment_id).to_dict())

    @app.route("/experiments/<experiment_id>/conversions", methods=["POST"])
    def track_conversion(experiment_id):
        data = _json_body()
        for key in ("customer_id", "tenant_id", "metric"):
            if not data.get(key):
                raise ValidationError(f"{key} is required")
        recorded = service.track_conversion(
            experiment_id,
            data["customer_id"],
            data["tenant_id"],
            data["metric"],
            data.get("value", 1.0),
            data.get("metadata"),
        )
        return jsonify({"recorded": recorded})

    @app.route("/experiments/<experiment_id>/assignment", methods=["GET"])
    def get_assignment(experiment_id):
        customer_id = request.args.get("customer_id")
        tenant_id = request.args.get("tenant_id")
        if not customer_id or not tenant_id:
            raise ValidationError("customer_id and tenant_id are required")
        experiment = experiments.get_experiment(experiment_id)
        if experiment is None:
            raise NotFoundError(f"Experiment not found: {experiment_id}")
        if experiment.type == ExperimentType.BANDIT:
            variant_id = experiments.optimize_with_bandit(experiment_id, customer_id, tenant_id)
        else:
            variant_id = experiments.get_variant_assignment(experiment_id, customer_id, tenant_id)
        return jsonify({
            "experiment_id": experiment_id,
            "customer_id": customer_id,
            "tenant_id": tenant_id,
            "variant_id": variant_id,
        })

    @app.route("/experiments/<experiment_id>/results", methods=["GET"])
    def get_results(experiment_id):
        results = experiments.get_experiment_results(experiment_id)
        if results is None:
            raise NotFoundError(f"Experiment not found: {experiment_id}")
        return jsonify(results.to_dict())

    return app


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    create_app().run(host="0.0.0.0", port=5000)
