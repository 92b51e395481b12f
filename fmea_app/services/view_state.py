"""
Tree view state and row rendering for the FMEA worksheet.

Which components and failure modes are expanded, and which ones are
selected, is held in an explicit TreeViewState owned by the caller (the
request in the API). build_tree_rows turns a project tree plus that state
into the flat list of rows the worksheet displays.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Sequence, Set

from fmea_app.services.risk_service import (
    BandLike,
    classify_band,
    compute_post_mitigation_risk,
    score_failure_mode,
)


@dataclass
class TreeViewState:
    expanded_components: Set[str] = field(default_factory=set)
    expanded_failure_modes: Set[str] = field(default_factory=set)
    selected_component_id: Optional[str] = None
    selected_failure_mode_id: Optional[str] = None

    @classmethod
    def from_query(cls, expanded: Iterable[str] = (), selected: Optional[str] = None,
                   project_tree: Optional[Dict[str, Any]] = None) -> 'TreeViewState':
        """
        Build a state from request parameters.

        `expanded` mixes component and failure mode ids; with a project tree
        they are sorted into the right set, without one they are applied to
        both. `selected` may name either kind of node.
        """
        ids = {i for i in expanded if i}
        state = cls()
        if project_tree is None:
            state.expanded_components = set(ids)
            state.expanded_failure_modes = set(ids)
            state.selected_failure_mode_id = selected
            return state

        component_ids = {c['id'] for c in project_tree.get('components', [])}
        fm_ids = {fm['id'] for c in project_tree.get('components', []) for fm in c.get('failureModes', [])}
        state.expanded_components = ids & component_ids
        state.expanded_failure_modes = ids & fm_ids
        if selected in component_ids:
            state.select_component(selected)
        elif selected in fm_ids:
            state.selected_failure_mode_id = selected
        return state

    def toggle_component(self, component_id: str):
        if component_id in self.expanded_components:
            self.expanded_components.discard(component_id)
        else:
            self.expanded_components.add(component_id)

    def toggle_failure_mode(self, failure_mode_id: str):
        if failure_mode_id in self.expanded_failure_modes:
            self.expanded_failure_modes.discard(failure_mode_id)
        else:
            self.expanded_failure_modes.add(failure_mode_id)

    def select_component(self, component_id: Optional[str]):
        self.selected_component_id = component_id
        self.selected_failure_mode_id = None

    def select_failure_mode(self, failure_mode_id: Optional[str], component_id: Optional[str] = None):
        self.selected_failure_mode_id = failure_mode_id
        if component_id is not None:
            self.selected_component_id = component_id

    def forget_component(self, component_id: str):
        """Drop a deleted component from the expanded and selected state."""
        self.expanded_components.discard(component_id)
        if self.selected_component_id == component_id:
            self.selected_component_id = None

    def forget_failure_mode(self, failure_mode_id: str):
        self.expanded_failure_modes.discard(failure_mode_id)
        if self.selected_failure_mode_id == failure_mode_id:
            self.selected_failure_mode_id = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'expandedComponents': sorted(self.expanded_components),
            'expandedFailureModes': sorted(self.expanded_failure_modes),
            'selectedComponentId': self.selected_component_id,
            'selectedFailureModeId': self.selected_failure_mode_id,
        }


def _band_fields(rpn: int, thresholds: Sequence[BandLike]) -> Dict[str, Any]:
    if rpn <= 0:
        return {'band': None, 'color': None}
    band = classify_band(rpn, thresholds)
    return {'band': band.label, 'color': band.hex_color}


def _failure_mode_row(fm: Dict[str, Any], component_id: str, view_state: TreeViewState,
                      thresholds: Sequence[BandLike]) -> Dict[str, Any]:
    risk = score_failure_mode(fm)
    rpn_post = max((compute_post_mitigation_risk(e) for e in fm.get('effects') or []), default=0)
    child_count = sum(len(fm.get(key) or []) for key in ('causes', 'effects', 'controls', 'actions'))
    return {
        'id': fm['id'],
        'type': 'failureMode',
        'parentId': component_id,
        'depth': 1,
        'label': fm.get('description', ''),
        'status': fm.get('status'),
        'expanded': fm['id'] in view_state.expanded_failure_modes,
        'selected': fm['id'] == view_state.selected_failure_mode_id,
        'hasChildren': child_count > 0,
        'rpnPre': risk.rpn,
        'rpnPost': rpn_post,
        'severity': risk.severity,
        'occurrence': risk.occurrence,
        'detection': risk.detection,
        **_band_fields(risk.rpn, thresholds),
    }


def _child_rows(fm: Dict[str, Any]) -> List[Dict[str, Any]]:
    rows = []
    for key, row_type, rating_key in (
        ('causes', 'cause', 'occurrence'),
        ('effects', 'effect', 'severity'),
        ('controls', 'control', 'detection'),
        ('actions', 'action', None),
    ):
        for child in fm.get(key) or []:
            row = {
                'id': child['id'],
                'type': row_type,
                'parentId': fm['id'],
                'depth': 2,
                'label': child.get('description', ''),
            }
            if rating_key:
                row['rating'] = child.get(rating_key)
            if row_type == 'effect':
                row['rpnPost'] = compute_post_mitigation_risk(child)
            elif row_type == 'control':
                row['kind'] = child.get('type')
            elif row_type == 'action':
                row['status'] = child.get('status')
            rows.append(row)
    return rows


def build_tree_rows(project_tree: Dict[str, Any], view_state: TreeViewState,
                    thresholds: Sequence[BandLike]) -> List[Dict[str, Any]]:
    """
    Flatten a project tree into display rows.

    Component rows are always present. Failure mode rows appear under an
    expanded component and carry their RPN with band label and colour.
    Cause, effect, control and action rows appear under an expanded
    failure mode.
    """
    rows: List[Dict[str, Any]] = []
    for component in project_tree.get('components', []):
        failure_modes = component.get('failureModes') or []
        highest = max((score_failure_mode(fm).rpn for fm in failure_modes), default=0)
        expanded = component['id'] in view_state.expanded_components
        rows.append({
            'id': component['id'],
            'type': 'component',
            'parentId': None,
            'depth': 0,
            'label': component.get('name', ''),
            'function': component.get('function', ''),
            'expanded': expanded,
            'selected': component['id'] == view_state.selected_component_id,
            'hasChildren': bool(failure_modes),
            'failureModeCount': len(failure_modes),
            'maxRpn': highest,
            **_band_fields(highest, thresholds),
        })
        if not expanded:
            continue
        for fm in failure_modes:
            fm_row = _failure_mode_row(fm, component['id'], view_state, thresholds)
            rows.append(fm_row)
            if fm_row['expanded']:
                rows.extend(_child_rows(fm))
    return rows
