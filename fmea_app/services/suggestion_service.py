import json
import logging
import random
import re
import time
from typing import Any, Dict, List

import google.generativeai as genai
from google.api_core import exceptions as google_exceptions
from flask import current_app
from pydantic import ValidationError

from fmea_app.config_manager import get_config
from fmea_app.models import (
    AISuggestion,
    ChatReply,
    DuplicateNameSuggestion,
    RiskScoreSuggestion,
    Suggestion,
    SuggestionResponse,
)

logger = logging.getLogger(__name__)

LIST_KINDS = ('failure-modes', 'causes', 'effects', 'controls')
RATING_KINDS = ('severity', 'occurrence', 'detection')

RATING_SCALES = {
    'severity': 'Severity Scale (1=no effect, 10=hazardous without warning)',
    'occurrence': 'Occurrence Scale (1=remote, 10=very high)',
    'detection': 'Detection Scale (1=certain detection, 10=cannot detect)',
}

# Ratings used when no model answer is available, by asset criticality
DEFAULT_RATINGS = {
    'critical': {'severity': 8, 'occurrence': 6, 'detection': 7},
    'high': {'severity': 7, 'occurrence': 5, 'detection': 6},
    'medium': {'severity': 5, 'occurrence': 4, 'detection': 5},
    'low': {'severity': 3, 'occurrence': 3, 'detection': 4},
}

FALLBACK_POOLS: Dict[str, List[Dict[str, Any]]] = {
    'failure-modes': [
        {'text': 'Mechanical wear or fatigue', 'confidence': 0.7, 'reasoning': 'Common failure mode for mechanical assets'},
        {'text': 'Electrical component failure', 'confidence': 0.7, 'reasoning': 'Common in electrical systems'},
        {'text': 'Software malfunction', 'confidence': 0.6, 'reasoning': 'Relevant for automated systems'},
        {'text': 'Corrosion or material degradation', 'confidence': 0.7, 'reasoning': 'Common in exposed environments'},
        {'text': 'Seal or gasket failure', 'confidence': 0.7, 'reasoning': 'Common in fluid systems'},
        {'text': 'Bearing failure', 'confidence': 0.7, 'reasoning': 'Common in rotating equipment'},
    ],
    'causes': [
        {'text': 'Inadequate maintenance', 'confidence': 0.8, 'reasoning': 'Common root cause across asset types'},
        {'text': 'Normal wear and tear', 'confidence': 0.7, 'reasoning': 'Expected degradation over time'},
        {'text': 'Operating beyond design limits', 'confidence': 0.7, 'reasoning': 'Common operational issue'},
        {'text': 'Contamination or fouling', 'confidence': 0.7, 'reasoning': 'Common in process systems'},
        {'text': 'Improper installation', 'confidence': 0.6, 'reasoning': 'Setup-related issues'},
        {'text': 'Environmental factors', 'confidence': 0.7, 'reasoning': 'Temperature, humidity, vibration'},
        {'text': 'Material defects', 'confidence': 0.6, 'reasoning': 'Manufacturing quality issues'},
        {'text': 'Lubrication inadequacy', 'confidence': 0.7, 'reasoning': 'Common in mechanical systems'},
    ],
    'effects': [
        {'text': 'Unplanned downtime', 'confidence': 0.8, 'reasoning': 'Direct operational impact'},
        {'text': 'Reduced performance or efficiency', 'confidence': 0.7, 'reasoning': 'Degraded operational capability'},
        {'text': 'Safety risk to personnel', 'confidence': 0.8, 'reasoning': 'Potential safety implications'},
        {'text': 'Product quality degradation', 'confidence': 0.7, 'reasoning': 'Output quality affected'},
        {'text': 'Environmental impact', 'confidence': 0.7, 'reasoning': 'Potential leaks or emissions'},
        {'text': 'Increased maintenance costs', 'confidence': 0.7, 'reasoning': 'Financial impact'},
        {'text': 'Secondary equipment damage', 'confidence': 0.7, 'reasoning': 'Cascading failures'},
        {'text': 'Regulatory non-compliance', 'confidence': 0.6, 'reasoning': 'Compliance issues'},
    ],
    'controls': [
        {'text': 'Regular visual inspection', 'type': 'detection', 'confidence': 0.8, 'reasoning': 'Standard detection method'},
        {'text': 'Preventive maintenance schedule', 'type': 'prevention', 'confidence': 0.8, 'reasoning': 'Proactive prevention approach'},
        {'text': 'Condition monitoring', 'type': 'detection', 'confidence': 0.7, 'reasoning': 'Continuous monitoring capability'},
        {'text': 'Vibration analysis', 'type': 'detection', 'confidence': 0.7, 'reasoning': 'For rotating equipment'},
        {'text': 'Temperature monitoring', 'type': 'detection', 'confidence': 0.7, 'reasoning': 'For thermal issues'},
        {'text': 'Periodic testing', 'type': 'detection', 'confidence': 0.7, 'reasoning': 'Functional verification'},
        {'text': 'Operator training', 'type': 'prevention', 'confidence': 0.7, 'reasoning': 'Prevent operational errors'},
    ],
}

_FENCE_PATTERN = re.compile(r'^```(?:json)?\s*(.*?)\s*```$', re.DOTALL)


class SuggestionUnavailable(Exception):
    """Raised when the text-generation service cannot produce an answer."""


def strip_code_fences(text: str) -> str:
    """Remove a surrounding ```json ... ``` block if the model added one."""
    cleaned = text.strip()
    match = _FENCE_PATTERN.match(cleaned)
    return match.group(1).strip() if match else cleaned


def _asset(context: Dict[str, Any]) -> Dict[str, Any]:
    return context.get('asset') or {}


def _standards_text(asset: Dict[str, Any]) -> str:
    standards = asset.get('standards')
    if isinstance(standards, str):
        try:
            standards = json.loads(standards)
        except ValueError:
            return standards
    if isinstance(standards, list) and standards:
        return ', '.join(str(s) for s in standards)
    return 'None specified'


def _failure_mode_text(context: Dict[str, Any]) -> str:
    return (context.get('failureMode') or {}).get('description') or 'General component failure'


# --- Prompts ---

def _failure_modes_prompt(context: Dict[str, Any]) -> str:
    asset = _asset(context)
    existing = (context.get('existingData') or {}).get('failureModes') or []
    existing_text = ', '.join(fm.get('description', '') if isinstance(fm, dict) else str(fm) for fm in existing) or 'None'
    return f'''
    You are an expert reliability engineer. Based on the following asset information, suggest 3-5 potential failure modes.

    Asset Details:
    - Name: {asset.get('name', 'N/A')}
    - Type: {asset.get('type', 'N/A')}
    - Context: {asset.get('context', 'N/A')}
    - Criticality: {asset.get('criticality', 'N/A')}
    - Standards: {_standards_text(asset)}
    - History: {asset.get('history') or 'No history provided'}
    - Configuration: {asset.get('configuration') or 'No configuration details'}

    Existing Failure Modes: {existing_text}

    Provide failure modes that are specific to this asset, different from the existing ones, realistic and technically accurate.

    Response Format:
    Your response MUST be a single, valid JSON object of the form
    {{"suggestions": [{{"text": "...", "confidence": 0.85, "reasoning": "..."}}]}}
    '''.strip()


def _causes_prompt(context: Dict[str, Any]) -> str:
    asset = _asset(context)
    failure_mode = context.get('failureMode') or {}
    return f'''
    You are an expert reliability engineer. For the following failure mode, suggest 3-5 potential root causes.

    Asset: {asset.get('name', 'N/A')} ({asset.get('type', 'N/A')})
    Context: {asset.get('context', 'N/A')}
    Failure Mode: {_failure_mode_text(context)}
    Process Step: {failure_mode.get('processStep') or 'Not specified'}

    Provide root causes, not symptoms. For each cause give an occurrence rating (1-10):
    1-3 remote, 4-6 low to moderate, 7-8 high, 9-10 very high.

    Response Format:
    Your response MUST be a single, valid JSON object of the form
    {{"suggestions": [{{"text": "...", "occurrence": 5, "confidence": 0.85, "reasoning": "..."}}]}}
    '''.strip()


def _effects_prompt(context: Dict[str, Any]) -> str:
    asset = _asset(context)
    return f'''
    You are an expert reliability engineer. For the following failure mode, suggest 3-5 potential effects.

    Asset: {asset.get('name', 'N/A')} ({asset.get('type', 'N/A')})
    Context: {asset.get('context', 'N/A')}
    Criticality: {asset.get('criticality', 'N/A')}
    Failure Mode: {_failure_mode_text(context)}

    Consider safety, environmental, operational, cost and regulatory impact.
    For each effect give a severity rating (1-10), taking the asset criticality into account:
    1-3 minor, 4-6 moderate, 7-8 serious, 9-10 catastrophic.

    Response Format:
    Your response MUST be a single, valid JSON object of the form
    {{"suggestions": [{{"text": "...", "severity": 7, "confidence": 0.85, "reasoning": "..."}}]}}
    '''.strip()


def _controls_prompt(context: Dict[str, Any]) -> str:
    asset = _asset(context)
    cause = context.get('cause') or {}
    return f'''
    You are an expert reliability engineer. Suggest preventive and detective controls for the following:

    Asset: {asset.get('name', 'N/A')} ({asset.get('type', 'N/A')})
    Failure Mode: {_failure_mode_text(context)}
    Cause: {cause.get('description') or 'General controls'}

    For each control give:
    - type: "prevention" or "detection"
    - detection rating (1-10): 1-3 almost certain to detect, 9-10 almost impossible to detect
    - effectiveness rating (1-10)

    Response Format:
    Your response MUST be a single, valid JSON object of the form
    {{"suggestions": [{{"text": "...", "type": "prevention", "detection": 5, "effectiveness": 7, "confidence": 0.85, "reasoning": "..."}}]}}
    '''.strip()


def _rating_prompt(context: Dict[str, Any], kind: str) -> str:
    asset = _asset(context)
    lines = [
        f"Asset: {asset.get('name', 'N/A')} ({asset.get('type', 'N/A')})",
        f"Context: {asset.get('context', 'N/A')}",
    ]
    for key, label in (('failureMode', 'Failure Mode'), ('cause', 'Cause'), ('effect', 'Effect')):
        description = (context.get(key) or {}).get('description')
        if description:
            lines.append(f"{label}: {description}")
    details = '\n    '.join(lines)
    return f'''
    You are an expert reliability engineer. Suggest a {kind} rating (1-10 scale) for the following:

    {details}

    {RATING_SCALES[kind]}

    Response Format:
    Your response MUST be a single, valid JSON object of the form {{"score": 6, "reasoning": "..."}}
    '''.strip()


PROMPT_BUILDERS = {
    'failure-modes': _failure_modes_prompt,
    'causes': _causes_prompt,
    'effects': _effects_prompt,
    'controls': _controls_prompt,
}


# --- Model access ---

def _generate(prompt: str, settings_key: str, json_response: bool = True) -> str:
    api_key = current_app.config.get('GOOGLE_API_KEY')
    if not api_key:
        raise SuggestionUnavailable("GOOGLE_API_KEY is not configured")
    genai.configure(api_key=api_key)

    llm_settings = get_config().get(settings_key, {})
    model_id = llm_settings.get('model', 'gemini-1.5-flash')
    max_retries = 2

    for attempt in range(max_retries):
        try:
            model = genai.GenerativeModel(model_id)
            config_kwargs = {'temperature': llm_settings.get('temperature', 0.7)}
            if json_response:
                config_kwargs['response_mime_type'] = "application/json"
            generation_config = genai.types.GenerationConfig(**config_kwargs)
            response = model.generate_content(prompt, generation_config=generation_config)
            return response.text
        except google_exceptions.PermissionDenied as e:
            logger.error(f"Google API permission denied. Please check your GOOGLE_API_KEY. Details: {e}")
            raise SuggestionUnavailable(str(e)) from e
        except Exception as e:
            logger.warning(f"Attempt {attempt + 1} failed during text generation: {e}")
            if attempt >= max_retries - 1:
                raise SuggestionUnavailable(str(e)) from e
            time.sleep(1)


def _local_fallback(kind: str, context: Dict[str, Any]) -> AISuggestion:
    pool = FALLBACK_POOLS[kind]
    count = min(len(pool), random.randint(3, 4))
    selected = random.sample(pool, count)
    asset_name = _asset(context).get('name', 'asset')
    logger.info(f"Using {count} fallback suggestions for '{kind}' ({asset_name})")
    return AISuggestion(
        type=kind,
        suggestions=[Suggestion(**item) for item in selected],
        context=f"Fallback suggestions for {asset_name} ({count} generic suggestions - AI unavailable)",
        fallback=True,
    )


def _context_label(kind: str, context: Dict[str, Any]) -> str:
    asset = _asset(context)
    if kind == 'failure-modes':
        return f"Failure modes for {asset.get('name', 'asset')} ({asset.get('type', 'N/A')})"
    if kind == 'causes':
        return f'Causes for "{_failure_mode_text(context)}"'
    if kind == 'effects':
        return f'Effects of "{_failure_mode_text(context)}"'
    return f"Controls for {_failure_mode_text(context)}"


# --- Public interface ---

def suggest(kind: str, context: Dict[str, Any]) -> AISuggestion:
    """
    Ask the model for failure modes, causes, effects or controls.
    Any failure falls back to a small generic pool, never an exception.
    """
    if kind not in PROMPT_BUILDERS:
        raise ValueError(f"Unknown suggestion type: {kind}")
    try:
        raw = _generate(PROMPT_BUILDERS[kind](context), 'suggestion_llm_settings')
        parsed = SuggestionResponse.model_validate_json(strip_code_fences(raw))
        return AISuggestion(type=kind, suggestions=parsed.suggestions, context=_context_label(kind, context))
    except SuggestionUnavailable as e:
        logger.info(f"AI suggestions unavailable for '{kind}': {e}")
    except ValidationError as e:
        logger.warning(f"Model returned malformed suggestions for '{kind}': {e}")
    return _local_fallback(kind, context)


def suggest_risk_score(kind: str, context: Dict[str, Any]) -> RiskScoreSuggestion:
    """Suggest a single severity, occurrence or detection rating, clamped to 1-10."""
    if kind not in RATING_KINDS:
        raise ValueError(f"Unknown rating type: {kind}")
    try:
        raw = _generate(_rating_prompt(context, kind), 'suggestion_llm_settings')
        parsed = json.loads(strip_code_fences(raw))
        score = int(parsed.get('score') or 5)
        return RiskScoreSuggestion(
            score=max(1, min(10, score)),
            reasoning=parsed.get('reasoning') or f"{kind} assessment based on asset characteristics",
        )
    except SuggestionUnavailable as e:
        logger.info(f"AI rating unavailable for '{kind}': {e}")
    except (ValueError, TypeError, AttributeError) as e:
        logger.warning(f"Model returned a malformed {kind} rating: {e}")

    criticality = _asset(context).get('criticality')
    score = DEFAULT_RATINGS.get(criticality, {}).get(kind, 5)
    return RiskScoreSuggestion(
        score=score,
        reasoning=f"Default {kind} rating based on asset criticality ({criticality}). AI analysis temporarily unavailable.",
        fallback=True,
    )


def suggest_any(kind: str, context: Dict[str, Any]):
    """Dispatch a suggestion request to the list or the rating flavour."""
    if kind in RATING_KINDS:
        return suggest_risk_score(kind, context)
    return suggest(kind, context)


def explain_risk(context: Dict[str, Any]) -> str:
    asset = _asset(context)
    prompt = f'''
    You are an expert reliability engineer. Provide a clear explanation of the risk associated with this failure mode.

    Asset: {asset.get('name', 'N/A')} ({asset.get('type', 'N/A')})
    Context: {asset.get('context', 'N/A')}
    Failure Mode: {(context.get('failureMode') or {}).get('description') or 'Not specified'}

    Explain why this failure mode is significant, what contributes to its risk level,
    key considerations for the assessment and a recommended mitigation approach.
    Keep it concise and professional.
    '''.strip()
    try:
        return _generate(prompt, 'explain_llm_settings', json_response=False)
    except SuggestionUnavailable as e:
        logger.info(f"AI risk explanation unavailable: {e}")
        return (
            f"Risk analysis temporarily unavailable. This failure mode for {asset.get('name', 'the asset')} "
            "should be evaluated based on its potential impact on safety, operations, and business continuity. "
            f"Consider the asset's criticality ({asset.get('criticality', 'unknown')}) and implement "
            "appropriate risk mitigation measures."
        )


DUPLICATE_KINDS = ('component', 'failureMode', 'effect', 'componentFunction')

_DUPLICATE_TARGETS = {
    'component': 'a new component name for a similar but distinct component',
    'failureMode': 'a new failure mode name for a related but distinct way the component can fail',
    'effect': 'a new effect description for a similar but distinct consequence of the failure',
    'componentFunction': 'a function description for the duplicated component',
}


def _duplicate_prompt(kind: str, original_name: str, context: Dict[str, Any]) -> str:
    lines = [
        f"Project: {context.get('projectName') or 'N/A'}",
        f"Project Description: {context.get('projectDescription') or 'N/A'}",
        f"Asset: {context.get('assetName') or 'N/A'} ({context.get('assetType') or 'N/A'})",
        f"Asset Context: {context.get('assetContext') or 'N/A'}",
        f"Criticality: {context.get('criticality') or 'N/A'}",
    ]
    if context.get('componentName'):
        lines.append(f"Component: {context['componentName']}")
    if context.get('failureModeName'):
        lines.append(f"Failure Mode: {context['failureModeName']}")
    details = '\n    '.join(lines)
    return f'''
    You are an expert reliability engineer helping to duplicate an item in an FMEA worksheet.
    The user is copying "{original_name}" and needs {_DUPLICATE_TARGETS[kind]}.

    {details}

    The new name must be short, technically accurate and must not repeat the original.

    Response Format:
    Your response MUST be a single, valid JSON object of the form {{"name": "...", "reasoning": "..."}}
    '''.strip()


def _duplicate_fallback(kind: str, original_name: str, context: Dict[str, Any]) -> DuplicateNameSuggestion:
    if kind == 'component':
        name = f"{original_name} - Variant"
    elif kind == 'failureMode':
        name = f"{original_name} - Related Mode"
    elif kind == 'effect':
        name = f"{original_name} - Similar Effect"
    else:
        name = f"Performs critical operation in {context.get('assetType') or 'system'}"
    return DuplicateNameSuggestion(
        name=name,
        reasoning="AI temporarily unavailable, using fallback pattern",
        fallback=True,
    )


def suggest_duplicate_name(kind: str, original_name: str, context: Dict[str, Any]) -> DuplicateNameSuggestion:
    """
    Propose a name for a copy of a component, failure mode or effect,
    or a function text for a duplicated component.
    """
    if kind not in DUPLICATE_KINDS:
        raise ValueError(f"Unknown duplicate type: {kind}")
    context = context or {}
    try:
        raw = _generate(_duplicate_prompt(kind, original_name, context), 'suggestion_llm_settings')
        suggestion = DuplicateNameSuggestion.model_validate_json(strip_code_fences(raw))
        if suggestion.name.strip():
            return DuplicateNameSuggestion(name=suggestion.name.strip(), reasoning=suggestion.reasoning)
        logger.warning(f"Model returned an empty name for '{kind}' duplicate")
    except SuggestionUnavailable as e:
        logger.info(f"AI duplicate naming unavailable for '{kind}': {e}")
    except ValidationError as e:
        logger.warning(f"Model returned a malformed duplicate name for '{kind}': {e}")
    return _duplicate_fallback(kind, original_name, context)


def _chat_context(context: Dict[str, Any]) -> str:
    project = context.get('currentProject') or {}
    if not project:
        return ''
    asset = project.get('asset') or {}
    return (
        f"Current project: {project.get('name', 'N/A')}\n"
        f"Asset: {asset.get('name', 'N/A')} ({asset.get('type', 'N/A')})\n"
        f"Criticality: {asset.get('criticality', 'N/A')}\n"
        f"Context: {asset.get('context', 'N/A')}\n\n"
    )


def chat(message: str, context: Dict[str, Any]) -> ChatReply:
    """Answer a free-form question from the FMEA assistant panel."""
    prompt = (
        "You are an FMEA assistant helping reliability engineers. You know FMEA methodology, "
        "RPN scoring with severity, occurrence and detection ratings, root cause analysis, "
        "and preventive and detective controls. Give practical, concise answers.\n\n"
        f"{_chat_context(context or {})}"
        f"User question: {message.strip()}"
    )
    try:
        return ChatReply(message=_generate(prompt, 'explain_llm_settings', json_response=False))
    except SuggestionUnavailable as e:
        logger.info(f"AI chat unavailable: {e}")
        return ChatReply(
            message="The AI assistant is temporarily unavailable. Please try again later, "
                    "or continue the analysis using the built-in suggestions.",
            fallback=True,
        )


def get_status() -> Dict[str, Any]:
    configured = bool(current_app.config.get('GOOGLE_API_KEY'))
    return {
        'configured': configured,
        'message': 'AI assistance is ready' if configured
        else 'AI assistance unavailable - Please configure GOOGLE_API_KEY',
    }
