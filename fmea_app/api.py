import io
import logging
from typing import Any, Optional, Tuple

from flask import Blueprint, jsonify, request, send_file

from fmea_app import validators
from fmea_app.config_manager import get_config, set_config
from fmea_app.services import fmea_service, suggestion_service
from fmea_app.services.report_generation_service import (
    ExportOptions,
    ReportGenerationService,
    export_filename,
)
from fmea_app.services.risk_service import build_project_report, build_summary
from fmea_app.services.settings_service import (
    merge_settings,
    rating_range,
    resolve_settings,
    threshold_warnings,
)
from fmea_app.services.view_state import TreeViewState, build_tree_rows

logger = logging.getLogger(__name__)

api_blueprint = Blueprint('api', __name__)

CHILD_VALIDATORS = {
    'causes': validators.validate_cause,
    'effects': validators.validate_effect,
    'controls': validators.validate_control,
}
CHILD_NAMES = {
    'causes': 'Cause',
    'effects': 'Effect',
    'controls': 'Control',
    'actions': 'Action',
}


@api_blueprint.before_request
def check_path_ids():
    """Reject malformed entity ids in the URL before any lookup."""
    for name, value in (request.view_args or {}).items():
        if name.endswith('_id'):
            is_valid, error = validators.validate_id(value, name)
            if not is_valid:
                return _error(error, 400)


def _ok(data: Any = None, status: int = 200):
    return jsonify({"success": True, "data": data, "error": None}), status


def _error(message: str, status: int):
    return jsonify({"success": False, "data": None, "error": message}), status


def _not_found(entity: str):
    return _error(f"{entity} not found", 404)


def _int_arg(name: str, default: Optional[int] = None,
             minimum: Optional[int] = None) -> Tuple[Optional[int], Optional[str]]:
    raw = request.args.get(name)
    if raw is None or raw == '':
        return default, None
    try:
        value = int(raw)
    except ValueError:
        return None, f"'{name}' must be an integer"
    if minimum is not None and value < minimum:
        return None, f"'{name}' must be at least {minimum}"
    return value, None


def _bool_arg(name: str, default: bool) -> bool:
    raw = request.args.get(name)
    if raw is None:
        return default
    return raw.lower() not in ('0', 'false', 'no', 'off')


def _list_arg(name: str) -> list:
    """Repeated parameters and comma-separated values are both accepted."""
    values = []
    for raw in request.args.getlist(name):
        values.extend(v.strip() for v in raw.split(',') if v.strip())
    return values


# --- Projects ---

@api_blueprint.route('/projects', methods=['GET'])
def list_projects():
    try:
        return _ok(fmea_service.list_projects())
    except Exception:
        logger.exception("Error fetching projects.")
        return _error("Failed to fetch projects", 500)


@api_blueprint.route('/projects', methods=['POST'])
def create_project():
    data = request.get_json(silent=True)
    is_valid, error = validators.validate_project(data)
    if not is_valid:
        return _error(error, 400)
    try:
        return _ok(fmea_service.create_project(data), 201)
    except Exception:
        logger.exception("Error creating project.")
        return _error("Failed to create project", 500)


@api_blueprint.route('/projects/<project_id>', methods=['GET'])
def get_project(project_id):
    """Project with its full component and failure mode tree."""
    try:
        project = fmea_service.get_project_tree(project_id)
        if project is None:
            return _not_found("Project")
        return _ok(project)
    except Exception:
        logger.exception(f"Error fetching project {project_id}.")
        return _error("Failed to fetch project", 500)


@api_blueprint.route('/projects/<project_id>', methods=['PUT', 'PATCH'])
def update_project(project_id):
    data = request.get_json(silent=True)
    is_valid, error = validators.validate_project(data, partial=True)
    if not is_valid:
        return _error(error, 400)
    try:
        project = fmea_service.update_project(project_id, data)
        if project is None:
            return _not_found("Project")
        return _ok(project)
    except Exception:
        logger.exception(f"Error updating project {project_id}.")
        return _error("Failed to update project", 500)


@api_blueprint.route('/projects/<project_id>', methods=['DELETE'])
def delete_project(project_id):
    try:
        if not fmea_service.delete_project(project_id):
            return _not_found("Project")
        return _ok({"id": project_id})
    except Exception:
        logger.exception(f"Error deleting project {project_id}.")
        return _error("Failed to delete project", 500)


# --- Settings ---

@api_blueprint.route('/projects/<project_id>/settings', methods=['GET'])
def get_project_settings(project_id):
    try:
        project = fmea_service.get_project(project_id)
        if project is None:
            return _not_found("Project")
        return _ok(resolve_settings(project))
    except Exception:
        logger.exception(f"Error fetching settings for project {project_id}.")
        return _error("Failed to fetch settings", 500)


@api_blueprint.route('/projects/<project_id>/settings', methods=['PUT', 'PATCH'])
def update_project_settings(project_id):
    """Deep-merge a settings update. Band problems are returned as warnings, not rejected."""
    data = request.get_json(silent=True)
    is_valid, error = validators.validate_settings(data)
    if not is_valid:
        return _error(error, 400)
    try:
        project = fmea_service.get_project(project_id)
        if project is None:
            return _not_found("Project")
        merged = merge_settings(resolve_settings(project), data)
        warnings = threshold_warnings(merged)
        if warnings:
            logger.info(f"Saved settings for project {project_id} with {len(warnings)} threshold warnings")
        fmea_service.save_project_settings(project_id, merged)
        return _ok({"settings": merged, "warnings": warnings})
    except Exception:
        logger.exception(f"Error updating settings for project {project_id}.")
        return _error("Failed to update settings", 500)


@api_blueprint.route('/projects/<project_id>/settings/validate', methods=['POST'])
def validate_project_settings(project_id):
    data = request.get_json(silent=True) or {}
    is_valid, error = validators.validate_settings(data) if data else (True, None)
    if not is_valid:
        return _error(error, 400)
    try:
        project = fmea_service.get_project(project_id)
        if project is None:
            return _not_found("Project")
        messages = threshold_warnings(merge_settings(resolve_settings(project), data))
        return _ok({"valid": not messages, "messages": messages})
    except Exception:
        logger.exception(f"Error validating settings for project {project_id}.")
        return _error("Failed to validate settings", 500)


# --- Components ---

@api_blueprint.route('/projects/<project_id>/components', methods=['GET'])
def list_components(project_id):
    try:
        if fmea_service.get_project(project_id) is None:
            return _not_found("Project")
        return _ok(fmea_service.list_components(project_id))
    except Exception:
        logger.exception(f"Error fetching components of project {project_id}.")
        return _error("Failed to fetch components", 500)


@api_blueprint.route('/projects/<project_id>/components', methods=['POST'])
def create_component(project_id):
    data = request.get_json(silent=True)
    is_valid, error = validators.validate_component(data)
    if not is_valid:
        return _error(error, 400)
    try:
        component = fmea_service.create_component(project_id, data)
        if component is None:
            return _not_found("Project")
        return _ok(component, 201)
    except Exception:
        logger.exception(f"Error creating component in project {project_id}.")
        return _error("Failed to create component", 500)


@api_blueprint.route('/components/<component_id>', methods=['PUT', 'PATCH'])
def update_component(component_id):
    data = request.get_json(silent=True)
    is_valid, error = validators.validate_component(data, partial=True)
    if not is_valid:
        return _error(error, 400)
    try:
        component = fmea_service.update_component(component_id, data)
        if component is None:
            return _not_found("Component")
        return _ok(component)
    except Exception:
        logger.exception(f"Error updating component {component_id}.")
        return _error("Failed to update component", 500)


@api_blueprint.route('/components/<component_id>', methods=['DELETE'])
def delete_component(component_id):
    try:
        if not fmea_service.delete_component(component_id):
            return _not_found("Component")
        return _ok({"id": component_id})
    except Exception:
        logger.exception(f"Error deleting component {component_id}.")
        return _error("Failed to delete component", 500)


# --- Failure modes ---

@api_blueprint.route('/components/<component_id>/failure-modes', methods=['GET'])
def list_failure_modes(component_id):
    try:
        if fmea_service.get_component(component_id) is None:
            return _not_found("Component")
        return _ok(fmea_service.list_failure_modes(component_id))
    except Exception:
        logger.exception(f"Error fetching failure modes of component {component_id}.")
        return _error("Failed to fetch failure modes", 500)


@api_blueprint.route('/components/<component_id>/failure-modes', methods=['POST'])
def create_failure_mode(component_id):
    data = request.get_json(silent=True)
    is_valid, error = validators.validate_failure_mode(data)
    if not is_valid:
        return _error(error, 400)
    try:
        fm = fmea_service.create_failure_mode(component_id, data)
        if fm is None:
            return _not_found("Component")
        return _ok(fm, 201)
    except Exception:
        logger.exception(f"Error creating failure mode for component {component_id}.")
        return _error("Failed to create failure mode", 500)


@api_blueprint.route('/projects/<project_id>/failure-modes', methods=['GET'])
def list_project_failure_modes(project_id):
    try:
        if fmea_service.get_project(project_id) is None:
            return _not_found("Project")
        return _ok(fmea_service.list_project_failure_modes(project_id))
    except Exception:
        logger.exception(f"Error fetching failure modes of project {project_id}.")
        return _error("Failed to fetch failure modes", 500)


@api_blueprint.route('/failure-modes/<failure_mode_id>', methods=['GET'])
def get_failure_mode(failure_mode_id):
    try:
        fm = fmea_service.get_failure_mode(failure_mode_id)
        if fm is None:
            return _not_found("Failure mode")
        return _ok(fm)
    except Exception:
        logger.exception(f"Error fetching failure mode {failure_mode_id}.")
        return _error("Failed to fetch failure mode", 500)


@api_blueprint.route('/failure-modes/<failure_mode_id>', methods=['PUT', 'PATCH'])
def update_failure_mode(failure_mode_id):
    data = request.get_json(silent=True)
    is_valid, error = validators.validate_failure_mode(data, partial=True)
    if not is_valid:
        return _error(error, 400)
    try:
        fm = fmea_service.update_failure_mode(failure_mode_id, data)
        if fm is None:
            return _not_found("Failure mode")
        return _ok(fm)
    except Exception:
        logger.exception(f"Error updating failure mode {failure_mode_id}.")
        return _error("Failed to update failure mode", 500)


@api_blueprint.route('/failure-modes/<failure_mode_id>', methods=['DELETE'])
def delete_failure_mode(failure_mode_id):
    try:
        if not fmea_service.delete_failure_mode(failure_mode_id):
            return _not_found("Failure mode")
        return _ok({"id": failure_mode_id})
    except Exception:
        logger.exception(f"Error deleting failure mode {failure_mode_id}.")
        return _error("Failed to delete failure mode", 500)


# --- Causes, effects, controls, actions ---

def _validate_child(collection: str, failure_mode_id: str, data, partial: bool):
    """Validate a child payload against the rating scale of the owning project."""
    project = fmea_service.get_failure_mode_project(failure_mode_id)
    if project is None:
        return None, _not_found("Failure mode")
    if collection == 'actions':
        is_valid, error = validators.validate_action(data, partial=partial)
    else:
        scale = rating_range(resolve_settings(project))
        is_valid, error = CHILD_VALIDATORS[collection](data, scale, partial=partial)
    if not is_valid:
        return None, _error(error, 400)
    return project, None


@api_blueprint.route('/failure-modes/<failure_mode_id>/<any(causes, effects, controls, actions):collection>',
                     methods=['POST'])
def create_child(failure_mode_id, collection):
    data = request.get_json(silent=True)
    _, error_response = _validate_child(collection, failure_mode_id, data, partial=False)
    if error_response:
        return error_response
    try:
        child = fmea_service.create_child(collection, failure_mode_id, data)
        if child is None:
            return _not_found("Failure mode")
        return _ok(child, 201)
    except Exception:
        logger.exception(f"Error adding {collection} to failure mode {failure_mode_id}.")
        return _error(f"Failed to create {CHILD_NAMES[collection].lower()}", 500)


@api_blueprint.route('/failure-modes/<failure_mode_id>/<any(causes, effects, controls, actions):collection>/<child_id>',
                     methods=['PUT', 'PATCH'])
def update_child(failure_mode_id, collection, child_id):
    data = request.get_json(silent=True)
    _, error_response = _validate_child(collection, failure_mode_id, data, partial=True)
    if error_response:
        return error_response
    try:
        child = fmea_service.update_child(collection, failure_mode_id, child_id, data)
        if child is None:
            return _not_found(CHILD_NAMES[collection])
        return _ok(child)
    except Exception:
        logger.exception(f"Error updating {collection} item {child_id}.")
        return _error(f"Failed to update {CHILD_NAMES[collection].lower()}", 500)


@api_blueprint.route('/failure-modes/<failure_mode_id>/<any(causes, effects, controls, actions):collection>/<child_id>',
                     methods=['DELETE'])
def delete_child(failure_mode_id, collection, child_id):
    try:
        if not fmea_service.delete_child(collection, failure_mode_id, child_id):
            return _not_found(CHILD_NAMES[collection])
        return _ok({"id": child_id})
    except Exception:
        logger.exception(f"Error deleting {collection} item {child_id}.")
        return _error(f"Failed to delete {CHILD_NAMES[collection].lower()}", 500)


# --- Risk views ---

@api_blueprint.route('/projects/<project_id>/metrics', methods=['GET'])
def get_project_metrics(project_id):
    """Dashboard metrics and chart data."""
    top_n, error = _int_arg('top', 10, minimum=0)
    if error:
        return _error(error, 400)
    try:
        project = fmea_service.get_project(project_id)
        if project is None:
            return _not_found("Project")
        settings = resolve_settings(project)
        report = build_project_report(
            fmea_service.list_project_failure_modes(project_id),
            fmea_service.list_project_actions(project_id),
            settings['dashboardCutoffs'],
            top_n,
        )
        return _ok(report)
    except Exception:
        logger.exception(f"Error computing metrics for project {project_id}.")
        return _error("Failed to fetch metrics", 500)


@api_blueprint.route('/projects/<project_id>/summary', methods=['GET'])
def get_project_summary(project_id):
    top_n, error = _int_arg('top', 5, minimum=0)
    if error:
        return _error(error, 400)
    try:
        project = fmea_service.get_project(project_id)
        if project is None:
            return _not_found("Project")
        settings = resolve_settings(project)
        summary = build_summary(
            fmea_service.list_components(project_id),
            fmea_service.list_project_failure_modes(project_id),
            settings['thresholds'],
            top_n,
        )
        return _ok(summary)
    except Exception:
        logger.exception(f"Error computing summary for project {project_id}.")
        return _error("Failed to fetch summary", 500)


@api_blueprint.route('/projects/<project_id>/tree', methods=['GET'])
def get_project_tree_rows(project_id):
    """Worksheet rows for the given expanded/selected state."""
    try:
        tree = fmea_service.get_project_tree(project_id)
        if tree is None:
            return _not_found("Project")
        view_state = TreeViewState.from_query(_list_arg('expanded'), request.args.get('selected'), tree)
        rows = build_tree_rows(tree, view_state, resolve_settings(tree)['thresholds'])
        return _ok({"rows": rows, "viewState": view_state.to_dict()})
    except Exception:
        logger.exception(f"Error building tree rows for project {project_id}.")
        return _error("Failed to fetch tree", 500)


# --- Exports ---

def _export_options() -> Tuple[Optional[ExportOptions], Optional[str]]:
    min_rpn, error = _int_arg('minRpn', minimum=0)
    if error:
        return None, error
    statuses = _list_arg('status')
    for status in statuses:
        if status not in validators.ALLOWED_FAILURE_MODE_STATUSES:
            return None, f"Invalid status filter: {status}"
    return ExportOptions(
        min_rpn=min_rpn,
        statuses=statuses,
        include_metrics=_bool_arg('includeMetrics', True),
        page_size=request.args.get('pageSize', 'letter'),
    ), None


def _export(project_id: str, fmt: str):
    options, error = _export_options()
    if error:
        return _error(error, 400)
    try:
        project = fmea_service.get_project(project_id)
        if project is None:
            return _not_found("Project")
        settings = resolve_settings(project)
        service = ReportGenerationService(settings['thresholds'], settings['dashboardCutoffs'])
        failure_modes = fmea_service.list_project_failure_modes(project_id)
        if fmt == 'pdf':
            content = service.generate_pdf_report(project, failure_modes, options)
            mimetype = 'application/pdf'
        else:
            content = service.generate_excel_report(project, failure_modes, options)
            mimetype = 'application/vnd.openxmlformats-officedocument.spreadsheetml.sheet'
        return send_file(
            io.BytesIO(content),
            mimetype=mimetype,
            as_attachment=True,
            download_name=export_filename(project, 'pdf' if fmt == 'pdf' else 'xlsx'),
        )
    except Exception:
        logger.exception(f"Error exporting project {project_id} as {fmt}.")
        return _error("Export failed", 500)


@api_blueprint.route('/projects/<project_id>/export/pdf', methods=['GET'])
def export_pdf(project_id):
    return _export(project_id, 'pdf')


@api_blueprint.route('/projects/<project_id>/export/excel', methods=['GET'])
def export_excel(project_id):
    return _export(project_id, 'excel')


# --- AI assistance ---

@api_blueprint.route('/ai/suggest', methods=['POST'])
def ai_suggest():
    data = request.get_json(silent=True)
    is_valid, error = validators.validate_suggestion_request(data)
    if not is_valid:
        return _error(error, 400)
    try:
        suggestion = suggestion_service.suggest_any(data['type'], data['context'])
        return _ok(suggestion.model_dump())
    except Exception:
        logger.exception("AI suggestion failed.")
        return _error("AI suggestion failed", 500)


@api_blueprint.route('/ai/explain', methods=['POST'])
def ai_explain():
    data = request.get_json(silent=True)
    if not data or not isinstance(data.get('context'), dict):
        return _error("Context is required", 400)
    try:
        return _ok({"explanation": suggestion_service.explain_risk(data['context'])})
    except Exception:
        logger.exception("AI explanation failed.")
        return _error("AI explanation failed", 500)


@api_blueprint.route('/ai/duplicate', methods=['POST'])
def ai_duplicate():
    data = request.get_json(silent=True)
    is_valid, error = validators.validate_duplicate_request(data)
    if not is_valid:
        return _error(error, 400)
    try:
        suggestion = suggestion_service.suggest_duplicate_name(
            data['type'], data['originalName'], data.get('context') or {})
        return _ok(suggestion.model_dump())
    except Exception:
        logger.exception("AI duplicate naming failed.")
        return _error("AI duplicate naming failed", 500)


@api_blueprint.route('/ai/chat', methods=['POST'])
def ai_chat():
    data = request.get_json(silent=True)
    is_valid, error = validators.validate_chat_request(data)
    if not is_valid:
        return _error(error, 400)
    try:
        reply = suggestion_service.chat(data['message'], data.get('context') or {})
        return _ok(reply.model_dump())
    except Exception:
        logger.exception("AI chat failed.")
        return _error("AI chat failed", 500)


@api_blueprint.route('/ai/status', methods=['GET'])
def ai_status():
    return _ok(suggestion_service.get_status())


# --- LLM configuration ---

@api_blueprint.route('/configuration', methods=['GET'])
def get_configuration():
    try:
        return _ok(get_config())
    except Exception:
        logger.exception("Failed to read configuration.")
        return _error("Failed to read configuration", 500)


@api_blueprint.route('/configuration', methods=['POST'])
def set_configuration():
    data = request.get_json(silent=True)
    is_valid, error = validators.validate_configuration(data)
    if not is_valid:
        return _error(error, 400)
    try:
        config = get_config()
        for key, value in data.items():
            if isinstance(value, dict) and isinstance(config.get(key), dict):
                config[key].update(value)
            else:
                config[key] = value
        set_config(config)
        return _ok(config)
    except Exception:
        logger.exception("Failed to save configuration.")
        return _error("Failed to save configuration", 500)
