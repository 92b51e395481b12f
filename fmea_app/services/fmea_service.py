"""
FMEA record service.

CRUD over the JSON store for the Project → Component → Failure Mode →
{Cause, Effect, Control, Action} hierarchy. Deletes cascade to every
descendant. Failure modes are returned with their children attached and
their representative risk computed by the risk service.
"""
import logging
from typing import Any, Dict, List, Optional

from fmea_app.database import generate_id, get_db, utcnow_iso
from fmea_app.services.risk_service import score_failure_mode
from fmea_app.services.settings_service import get_default_settings

logger = logging.getLogger(__name__)

# Writable fields per collection; anything else in a payload is ignored
PROJECT_FIELDS = ('name', 'description', 'status', 'asset')
COMPONENT_FIELDS = ('name', 'description', 'function', 'order')
FAILURE_MODE_FIELDS = ('description', 'processStep', 'status')
CHILD_FIELDS = {
    'causes': ('description', 'occurrence'),
    'effects': (
        'description', 'severity', 'severityPost', 'occurrencePost', 'detectionPost',
        'potentialCause', 'currentDesign', 'justificationPre', 'justificationPost',
        'responsible', 'actionStatus',
    ),
    'controls': ('type', 'description', 'detection', 'effectiveness'),
    'actions': ('description', 'owner', 'dueDate', 'status', 'actionTaken'),
}
CHILD_COLLECTIONS = tuple(CHILD_FIELDS)

CHILD_DEFAULTS = {
    'causes': {},
    'effects': {},
    'controls': {'effectiveness': None},
    'actions': {'status': 'open', 'owner': '', 'dueDate': None, 'actionTaken': ''},
}


def _pick(data: Dict[str, Any], fields) -> Dict[str, Any]:
    return {key: data[key] for key in fields if key in data}


def _find(items: List[Dict[str, Any]], item_id: str) -> Optional[Dict[str, Any]]:
    return next((item for item in items if item['id'] == item_id), None)


def _touch(record: Dict[str, Any], changes: Dict[str, Any]):
    record.update(changes)
    record['updatedAt'] = utcnow_iso()


def _new_record(**fields) -> Dict[str, Any]:
    now = utcnow_iso()
    return {'id': generate_id(), **fields, 'createdAt': now, 'updatedAt': now}


def _attach_children(failure_mode: Dict[str, Any], data: Dict[str, Any]) -> Dict[str, Any]:
    fm = dict(failure_mode)
    for collection in CHILD_COLLECTIONS:
        fm[collection] = [c for c in data[collection] if c['failureModeId'] == fm['id']]
    fm['risk'] = score_failure_mode(fm).to_dict()
    return fm


def _components_sorted(components: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return sorted(components, key=lambda c: (c.get('order') is None, c.get('order') or 0, c['createdAt']))


# --- Projects ---

def list_projects() -> List[Dict[str, Any]]:
    data = get_db().read()
    results = []
    for project in data['projects']:
        summary = dict(project)
        summary['componentCount'] = sum(1 for c in data['components'] if c['projectId'] == project['id'])
        summary['failureModeCount'] = sum(1 for f in data['failureModes'] if f['projectId'] == project['id'])
        results.append(summary)
    return sorted(results, key=lambda p: p['updatedAt'], reverse=True)


def get_project(project_id: str) -> Optional[Dict[str, Any]]:
    return _find(get_db().read()['projects'], project_id)


def get_project_tree(project_id: str) -> Optional[Dict[str, Any]]:
    """Project with its components, each holding its failure modes with children and risk."""
    data = get_db().read()
    project = _find(data['projects'], project_id)
    if project is None:
        return None

    tree = dict(project)
    tree['components'] = []
    for component in _components_sorted([c for c in data['components'] if c['projectId'] == project_id]):
        node = dict(component)
        node['failureModes'] = [
            _attach_children(fm, data)
            for fm in data['failureModes'] if fm['componentId'] == component['id']
        ]
        tree['components'].append(node)
    return tree


def create_project(payload: Dict[str, Any]) -> Dict[str, Any]:
    project = _new_record(
        name=payload['name'],
        description=payload.get('description', ''),
        status=payload.get('status', 'in-progress'),
        asset=payload.get('asset') or {},
        settings=get_default_settings(),
    )
    with get_db().transaction() as data:
        data['projects'].append(project)
    logger.info(f"Created project {project['id']} ({project['name']})")
    return project


def update_project(project_id: str, payload: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    with get_db().transaction() as data:
        project = _find(data['projects'], project_id)
        if project is None:
            return None
        _touch(project, _pick(payload, PROJECT_FIELDS))
        return dict(project)


def save_project_settings(project_id: str, settings: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    with get_db().transaction() as data:
        project = _find(data['projects'], project_id)
        if project is None:
            return None
        _touch(project, {'settings': settings})
        return settings


def delete_project(project_id: str) -> bool:
    """Delete a project with all of its components, failure modes and their children."""
    with get_db().transaction() as data:
        if _find(data['projects'], project_id) is None:
            return False
        fm_ids = {fm['id'] for fm in data['failureModes'] if fm['projectId'] == project_id}
        data['projects'] = [p for p in data['projects'] if p['id'] != project_id]
        data['components'] = [c for c in data['components'] if c['projectId'] != project_id]
        _remove_failure_modes(data, fm_ids)
    logger.info(f"Deleted project {project_id} with {len(fm_ids)} failure modes")
    return True


def _remove_failure_modes(data: Dict[str, Any], fm_ids: set):
    data['failureModes'] = [fm for fm in data['failureModes'] if fm['id'] not in fm_ids]
    for collection in CHILD_COLLECTIONS:
        data[collection] = [c for c in data[collection] if c['failureModeId'] not in fm_ids]


# --- Components ---

def list_components(project_id: str) -> List[Dict[str, Any]]:
    data = get_db().read()
    return _components_sorted([c for c in data['components'] if c['projectId'] == project_id])


def get_component(component_id: str) -> Optional[Dict[str, Any]]:
    return _find(get_db().read()['components'], component_id)


def create_component(project_id: str, payload: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    with get_db().transaction() as data:
        if _find(data['projects'], project_id) is None:
            return None
        siblings = [c for c in data['components'] if c['projectId'] == project_id]
        component = _new_record(
            projectId=project_id,
            name=payload['name'],
            description=payload.get('description', ''),
            function=payload.get('function', ''),
            order=payload.get('order', len(siblings)),
        )
        data['components'].append(component)
    return component


def update_component(component_id: str, payload: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    with get_db().transaction() as data:
        component = _find(data['components'], component_id)
        if component is None:
            return None
        _touch(component, _pick(payload, COMPONENT_FIELDS))
        return dict(component)


def delete_component(component_id: str) -> bool:
    with get_db().transaction() as data:
        if _find(data['components'], component_id) is None:
            return False
        fm_ids = {fm['id'] for fm in data['failureModes'] if fm['componentId'] == component_id}
        data['components'] = [c for c in data['components'] if c['id'] != component_id]
        _remove_failure_modes(data, fm_ids)
    return True


# --- Failure modes ---

def list_failure_modes(component_id: str) -> List[Dict[str, Any]]:
    data = get_db().read()
    return [_attach_children(fm, data) for fm in data['failureModes'] if fm['componentId'] == component_id]


def list_project_failure_modes(project_id: str) -> List[Dict[str, Any]]:
    """Every failure mode of a project with its children and risk attached."""
    data = get_db().read()
    return [_attach_children(fm, data) for fm in data['failureModes'] if fm['projectId'] == project_id]


def list_project_actions(project_id: str) -> List[Dict[str, Any]]:
    data = get_db().read()
    fm_ids = {fm['id'] for fm in data['failureModes'] if fm['projectId'] == project_id}
    return [a for a in data['actions'] if a['failureModeId'] in fm_ids]


def get_failure_mode(failure_mode_id: str) -> Optional[Dict[str, Any]]:
    data = get_db().read()
    fm = _find(data['failureModes'], failure_mode_id)
    if fm is None:
        return None
    return _attach_children(fm, data)


def get_failure_mode_project(failure_mode_id: str) -> Optional[Dict[str, Any]]:
    """The project owning a failure mode, used to resolve its rating scale."""
    data = get_db().read()
    fm = _find(data['failureModes'], failure_mode_id)
    if fm is None:
        return None
    return _find(data['projects'], fm['projectId'])


def create_failure_mode(component_id: str, payload: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    with get_db().transaction() as data:
        component = _find(data['components'], component_id)
        if component is None:
            return None
        fm = _new_record(
            projectId=component['projectId'],
            componentId=component_id,
            description=payload['description'],
            processStep=payload.get('processStep', ''),
            status=payload.get('status', 'active'),
        )
        data['failureModes'].append(fm)
        return _attach_children(fm, data)


def update_failure_mode(failure_mode_id: str, payload: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    with get_db().transaction() as data:
        fm = _find(data['failureModes'], failure_mode_id)
        if fm is None:
            return None
        _touch(fm, _pick(payload, FAILURE_MODE_FIELDS))
        return _attach_children(fm, data)


def delete_failure_mode(failure_mode_id: str) -> bool:
    with get_db().transaction() as data:
        if _find(data['failureModes'], failure_mode_id) is None:
            return False
        _remove_failure_modes(data, {failure_mode_id})
    return True


# --- Causes, effects, controls, actions ---

def create_child(collection: str, failure_mode_id: str, payload: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """Add a cause, effect, control or action to a failure mode."""
    with get_db().transaction() as data:
        fm = _find(data['failureModes'], failure_mode_id)
        if fm is None:
            return None
        child = _new_record(
            failureModeId=failure_mode_id,
            **{**CHILD_DEFAULTS[collection], **_pick(payload, CHILD_FIELDS[collection])},
        )
        data[collection].append(child)
        fm['updatedAt'] = child['updatedAt']
    return child


def update_child(collection: str, failure_mode_id: str, child_id: str,
                 payload: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    with get_db().transaction() as data:
        child = _find(data[collection], child_id)
        if child is None or child['failureModeId'] != failure_mode_id:
            return None
        _touch(child, _pick(payload, CHILD_FIELDS[collection]))
        return dict(child)


def delete_child(collection: str, failure_mode_id: str, child_id: str) -> bool:
    with get_db().transaction() as data:
        child = _find(data[collection], child_id)
        if child is None or child['failureModeId'] != failure_mode_id:
            return False
        data[collection] = [c for c in data[collection] if c['id'] != child_id]
    return True
