"""Flask API for the experimentation engine."""
from typing import Optional

from flask import Flask, jsonify, request

from experiment_engine.config import configure_logging, get_settings
from experiment_engine.controller import ExperimentController, build_controller
from experiment_engine.errors import ErrorCode, ExperimentError, validation_error
from experiment_engine.schema import ExperimentStatus, SubjectContext

API_PREFIX = "/api/v1/experiments"

STATUS_BY_CODE = {
    ErrorCode.VALIDATION: 400,
    ErrorCode.NOT_FOUND: 404,
    ErrorCode.NOT_ELIGIBLE: 200,
    ErrorCode.NOT_IN_TRAFFIC: 200,
    ErrorCode.NOT_RUNNING: 409,
    ErrorCode.INVALID_TRANSITION: 409,
    ErrorCode.APPROVAL_REQUIRED: 403,
    ErrorCode.RECORD_FAILED: 503,
    ErrorCode.AGGREGATION_FAILED: 503,
}


def _body() -> dict:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise validation_error("Request body must be a JSON object")
    return data


def _subject_context(subject_id: str, data: dict) -> Optional[SubjectContext]:
    context = data.get("context")
    if context is None:
        return None
    if not isinstance(context, dict):
        raise validation_error("context must be an object")
    try:
        return SubjectContext(subject_id=subject_id, **context)
    except TypeError as e:
        raise validation_error(f"Invalid context: {e}") from e


def create_app(controller: Optional[ExperimentController] = None) -> Flask:
    app = Flask(__name__)
    engine = controller or build_controller()
    app.config["CONTROLLER"] = engine

    @app.errorhandler(ExperimentError)
    def handle_experiment_error(e: ExperimentError):
        body = e.to_dict()
        if e.benign:
            body["assigned"] = False
        return jsonify(body), STATUS_BY_CODE.get(e.code, 500)

    @app.route("/ping", methods=["GET"])
    def ping():
        return "pong"

    @app.route(API_PREFIX, methods=["POST"])
    def create_experiment():
        experiment = engine.create_experiment(_body())
        return jsonify(experiment.to_dict()), 201

    @app.route(API_PREFIX, methods=["GET"])
    def list_experiments():
        status = request.args.get("status")
        if status:
            try:
                status = ExperimentStatus(status)
            except ValueError:
                raise validation_error(f"Unknown status: {status}")
        return jsonify([e.to_dict() for e in engine.list_experiments(status or None)])

    @app.route(f"{API_PREFIX}/<experiment_id>/approve", methods=["POST"])
    def approve(experiment_id):
        data = _body()
        return jsonify(engine.approve(experiment_id, data.get("approved_by", "")).to_dict())

    @app.route(f"{API_PREFIX}/<experiment_id>/start", methods=["POST"])
    def start(experiment_id):
        data = _body()
        return jsonify(engine.start(experiment_id, data.get("approval_token")).to_dict())

    @app.route(f"{API_PREFIX}/<experiment_id>/assign", methods=["POST"])
    def assign(experiment_id):
        data = _body()
        subject_id = data.get("subject_id")
        if not subject_id:
            raise validation_error("subject_id is required")
        variant = engine.assign(
            experiment_id,
            str(subject_id),
            context=_subject_context(str(subject_id), data),
            preferred_variant=data.get("preferred_variant"),
        )
        return jsonify({
            "assigned": True,
            "experiment_id": experiment_id,
            "subject_id": subject_id,
            "variant_id": variant.id,
            "variant_name": variant.name,
            "feature_flag_value": variant.feature_flag_value,
            "config": variant.config,
        })

    @app.route(f"{API_PREFIX}/<experiment_id>/metrics", methods=["POST"])
    def record_metric(experiment_id):
        data = _body()
        missing = [k for k in ("subject_id", "metric_id", "value") if k not in data]
        if missing:
            raise validation_error(f"Missing fields: {', '.join(missing)}")
        try:
            value = float(data["value"])
        except (TypeError, ValueError):
            raise validation_error(f"value must be numeric, got {data['value']!r}")
        recorded = engine.record_metric_event(
            experiment_id,
            str(data["subject_id"]),
            str(data["metric_id"]),
            value,
            event_id=data.get("event_id"),
        )
        return jsonify({"recorded": recorded}), 201 if recorded else 200

    @app.route(f"{API_PREFIX}/<experiment_id>/analysis", methods=["GET"])
    def analysis(experiment_id):
        return jsonify(engine.analyze(experiment_id).to_dict())

    @app.route(f"{API_PREFIX}/<experiment_id>/summary", methods=["GET"])
    def summary(experiment_id):
        return jsonify(engine.get_summary(experiment_id).to_dict())

    @app.route(f"{API_PREFIX}/<experiment_id>/pause", methods=["POST"])
    def pause(experiment_id):
        data = _body()
        return jsonify(engine.pause(experiment_id, data.get("reason", "manual")).to_dict())

    @app.route(f"{API_PREFIX}/<experiment_id>/resume", methods=["POST"])
    def resume(experiment_id):
        return jsonify(engine.resume(experiment_id).to_dict())

    @app.route(f"{API_PREFIX}/<experiment_id>/stop", methods=["POST"])
    def stop(experiment_id):
        data = _body()
        reason = data.get("reason")
        if not reason:
            raise validation_error("reason is required")
        return jsonify(engine.stop(experiment_id, reason).to_dict())

    @app.route(f"{API_PREFIX}/<experiment_id>/complete", methods=["POST"])
    def complete(experiment_id):
        data = _body()
        winner = data.get("winning_variant_id")
        if not winner:
            raise validation_error("winning_variant_id is required")
        return jsonify(engine.complete(experiment_id, winner).to_dict())

    @app.route(f"{API_PREFIX}/<experiment_id>/archive", methods=["POST"])
    def archive(experiment_id):
        return jsonify(engine.archive(experiment_id).to_dict())

    return app


if __name__ == "__main__":
    settings = get_settings()
    configure_logging(settings)
    create_app(build_controller(settings)).run(host="0.0.0.0", port=5000)
