from flask import Blueprint, Flask, current_app, request, jsonify
import logging
from typing import Optional
from services.azure_devops_service import AzureDevOpsService
from services.batch_fetcher import BatchFetcher
from services.config import Settings, load_settings
from services.errors import (
    AzureDevOpsAuthenticationError,
    ConfigurationError,
    InvalidFilter,
    RemoteStoreError,
)
from services.hierarchy_service import resolve_ancestor_closure
from services.logging_service import setup_logging
from services import wiql_builder
from flasgger import Swagger

logger = logging.getLogger(__name__)

# Search results are capped; the dashboard shows the first few anyway
SEARCH_LIMIT = 100

swagger_config = {
    "headers": [],
    "specs": [
        {
            "endpoint": 'apispec',
            "route": '/api/apispec.json',
            "rule_filter": lambda rule: True,
            "model_filter": lambda tag: True,
        }
    ],
    "static_url_path": "/api/flasgger_static",
    "swagger_ui": True,
    "specs_route": "/api/docs"
}

swagger_template = {
    "info": {
        "title": "Azure DevOps Dashboard API",
        "description": "Work items, sprint trees, teams and pull requests from Azure DevOps",
        "version": "1.0",
        "contact": {
            "name": "API Support"
        }
    }
}

api = Blueprint("api", __name__, url_prefix="/api")


def _settings() -> Settings:
    return current_app.config["SETTINGS"]


def _service() -> AzureDevOpsService:
    """The process-wide Azure DevOps client, built on first use"""
    service = current_app.config.get("ADO_SERVICE")
    if service is None:
        settings = _settings().require()
        service = AzureDevOpsService(
            settings.pat,
            settings.organization,
            settings.project,
            api_version=settings.api_version,
            timeout=settings.timeout,
            retries=settings.retries,
        )
        current_app.config["ADO_SERVICE"] = service
    return service


def _fetcher() -> BatchFetcher:
    return BatchFetcher(_service(), max_workers=_settings().fetch_workers)


def _fetch_items(ids, include_relations=True):
    return [item.to_dict() for item in _fetcher().fetch(ids, include_relations=include_relations)]


def _error_response(e: Exception, context: str):
    """Translate an exception into the JSON error the dashboard expects"""
    if isinstance(e, InvalidFilter):
        logger.error(f"{context}: {str(e)}")
        return jsonify({"error": str(e)}), 400
    if isinstance(e, ConfigurationError):
        logger.error(f"{context}: {str(e)}")
        return jsonify({"error": str(e), "status": "unconfigured"}), 500
    if isinstance(e, AzureDevOpsAuthenticationError):
        logger.error(f"{context}: authentication failed with Azure DevOps")
        return jsonify({
            "error": "Invalid Azure DevOps PAT token. Please check your credentials.",
            "status": "unauthorized"
        }), 500
    if isinstance(e, RemoteStoreError):
        logger.error(f"{context}: {str(e)}")
        return jsonify({"error": e.args[0] if e.args else str(e), "status": "error"}), 500

    logger.exception(context)
    return jsonify({"error": "An unexpected error occurred. Please try again.", "status": "error"}), 500


@api.route('/health', methods=['GET'])
def health_check():
    """
    Health check endpoint
    ---
    responses:
      200:
        description: Service is up; configured tells whether Azure DevOps coordinates are set
    """
    settings = _settings()
    return jsonify({
        "status": "ok",
        "configured": settings.configured,
        "org": settings.organization,
        "project": settings.project
    }), 200


@api.route('/iterations', methods=['GET'])
def get_iterations():
    """
    List the iterations (sprints) of a team
    ---
    parameters:
      - in: query
        name: team
        type: string
        description: Team name, defaults to "<project> Team"
    responses:
      200:
        description: Iterations as returned by Azure DevOps
    """
    try:
        team = request.args.get('team') or _settings().default_team
        return jsonify(_service().get_iterations(team)), 200
    except Exception as e:
        return _error_response(e, "Error fetching iterations")


@api.route('/iterations/current', methods=['GET'])
def get_current_iteration():
    """
    Current iteration of a team
    ---
    parameters:
      - in: query
        name: team
        type: string
    responses:
      200:
        description: The current iteration as a one-element list
    """
    try:
        team = request.args.get('team') or _settings().default_team
        return jsonify(_service().get_iterations(team, timeframe="current")), 200
    except Exception as e:
        return _error_response(e, "Error fetching current iteration")


@api.route('/teams', methods=['GET'])
def get_teams():
    """
    List the teams of the project
    ---
    responses:
      200:
        description: Teams as returned by Azure DevOps
    """
    try:
        return jsonify(_service().get_teams()), 200
    except Exception as e:
        return _error_response(e, "Error fetching teams")


@api.route('/teams/<path:team_id>/members', methods=['GET'])
def get_team_members(team_id):
    """
    List the members of a team
    ---
    parameters:
      - in: path
        name: team_id
        type: string
        required: true
    responses:
      200:
        description: Team members as returned by Azure DevOps
    """
    try:
        return jsonify(_service().get_team_members(team_id)), 200
    except Exception as e:
        return _error_response(e, "Error fetching team members")


@api.route('/wiql', methods=['POST'])
def execute_wiql():
    """
    Execute a WIQL query
    ---
    parameters:
      - in: body
        name: body
        required: true
        schema:
          type: object
          required:
            - query
          properties:
            query:
              type: string
    responses:
      200:
        description: Raw WIQL response
      400:
        description: Missing query
    """
    try:
        data = request.get_json(silent=True) or {}
        query = data.get('query')
        if not query or not isinstance(query, str):
            return jsonify({"error": "Missing required parameter: query"}), 400
        return jsonify(_service().run_wiql(query)), 200
    except Exception as e:
        return _error_response(e, "Error executing WIQL")


@api.route('/workitems/batch', methods=['POST'])
def get_work_items_batch():
    """
    Fetch work items by id, any number of ids
    ---
    parameters:
      - in: body
        name: body
        required: true
        schema:
          type: object
          properties:
            ids:
              type: array
              items:
                type: integer
    responses:
      200:
        description: Work items with relations
      400:
        description: ids is not a list of integers
    """
    try:
        data = request.get_json(silent=True) or {}
        ids = data.get('ids') or []
        if not isinstance(ids, list) or not all(isinstance(i, int) and not isinstance(i, bool) for i in ids):
            return jsonify({"error": "ids must be a list of integers"}), 400
        if not ids:
            return jsonify({"value": []}), 200
        return jsonify({"value": _fetch_items(ids)}), 200
    except Exception as e:
        return _error_response(e, "Error fetching work items")


@api.route('/workitems/<int:work_item_id>', methods=['GET'])
def get_work_item(work_item_id):
    """
    Fetch a single work item with relations
    ---
    parameters:
      - in: path
        name: work_item_id
        type: integer
        required: true
    responses:
      200:
        description: The work item
    """
    try:
        return jsonify(_service().get_work_item(work_item_id)), 200
    except Exception as e:
        return _error_response(e, f"Error fetching work item {work_item_id}")


@api.route('/workitems', methods=['GET'])
def get_work_items_by_type():
    """
    Work items of one type, for the tree root
    ---
    parameters:
      - in: query
        name: type
        type: string
        enum: [All, Epic, Feature, User Story, Task, Bug]
        default: Epic
    responses:
      200:
        description: Work items with relations
      400:
        description: Unknown work item type
    """
    try:
        query = wiql_builder.type_query(request.args.get('type') or 'Epic')
        ids = _service().find_ids(query)
        if not ids:
            return jsonify({"value": []}), 200
        return jsonify({"value": _fetch_items(ids)}), 200
    except Exception as e:
        return _error_response(e, "Error fetching work items by type")


@api.route('/epics', methods=['GET'])
def get_epics():
    """
    All epics that are not removed
    ---
    responses:
      200:
        description: Epics with relations
    """
    try:
        ids = _service().find_ids(wiql_builder.epics_query())
        if not ids:
            return jsonify({"value": []}), 200
        return jsonify({"value": _fetch_items(ids)}), 200
    except Exception as e:
        return _error_response(e, "Error fetching epics")


@api.route('/iterations/<path:iteration_path>/workitems', methods=['GET'])
def get_iteration_work_items(iteration_path):
    """
    Work items of an iteration
    ---
    parameters:
      - in: path
        name: iteration_path
        type: string
        required: true
      - in: query
        name: assignedTo
        type: string
      - in: query
        name: type
        type: string
    responses:
      200:
        description: Work items with relations
      400:
        description: Invalid filter
    """
    try:
        item_filter = wiql_builder.build_iteration_filter(
            iteration_path,
            assigned_to=request.args.get('assignedTo'),
            work_item_type=request.args.get('type'),
        )
        ids = _service().find_ids(wiql_builder.iteration_query(item_filter))
        if not ids:
            return jsonify({"value": []}), 200
        return jsonify({"value": _fetch_items(ids)}), 200
    except Exception as e:
        return _error_response(e, "Error fetching iteration work items")


@api.route('/iterations/<path:iteration_path>/tree', methods=['GET'])
def get_iteration_tree(iteration_path):
    """
    Sprint work items plus every ancestor needed to build the parent-chain tree
    ---
    parameters:
      - in: path
        name: iteration_path
        type: string
        required: true
      - in: query
        name: assignedTo
        type: string
        description: Only items assigned to this person; "All" means everyone
    responses:
      200:
        description: Sprint items and ancestors
        schema:
          type: object
          properties:
            value:
              type: array
              items:
                type: object
            sprintIds:
              type: array
              items:
                type: integer
            complete:
              type: boolean
              description: False when a very large or cyclic hierarchy was truncated
      400:
        description: Invalid filter
      500:
        description: Azure DevOps request failed
    """
    try:
        assigned_to = request.args.get('assignedTo')
        if assigned_to == 'All':
            assigned_to = None
        item_filter = wiql_builder.build_iteration_filter(iteration_path, assigned_to=assigned_to)
        logger.info(f"Building tree for iteration {item_filter.iteration_path}")

        result = resolve_ancestor_closure(_service(), item_filter, fetcher=_fetcher())
        return jsonify(result.to_dict()), 200
    except Exception as e:
        return _error_response(e, "Error building iteration tree")


@api.route('/workitems/<int:work_item_id>/children', methods=['GET'])
def get_children(work_item_id):
    """
    Direct children of a work item
    ---
    parameters:
      - in: path
        name: work_item_id
        type: integer
        required: true
    responses:
      200:
        description: Child work items with relations
    """
    try:
        child_ids = _service().find_child_ids(work_item_id)
        if not child_ids:
            return jsonify({"value": []}), 200
        return jsonify({"value": _fetch_items(child_ids)}), 200
    except Exception as e:
        return _error_response(e, f"Error fetching children of {work_item_id}")


@api.route('/search', methods=['GET'])
def search_work_items():
    """
    Search work items by title, or look one up by id
    ---
    parameters:
      - in: query
        name: q
        type: string
        description: Title text; a purely numeric value is looked up as an id
      - in: query
        name: type
        type: string
        default: All
    responses:
      200:
        description: Up to 100 matching work items
      400:
        description: Unknown work item type
    """
    try:
        search_text = (request.args.get('q') or '').strip()
        work_item_type = request.args.get('type') or 'All'
        if not search_text:
            return jsonify({"value": []}), 200

        work_item_id = wiql_builder.parse_numeric_query(search_text)
        if work_item_id is not None:
            return jsonify({"value": _fetch_items([work_item_id], include_relations=False)}), 200

        ids = _service().find_ids(wiql_builder.search_query(search_text, work_item_type))[:SEARCH_LIMIT]
        if not ids:
            return jsonify({"value": []}), 200
        return jsonify({"value": _fetch_items(ids, include_relations=False)}), 200
    except Exception as e:
        return _error_response(e, "Error searching work items")


@api.route('/prs', methods=['GET'])
def get_pull_requests():
    """
    Pull requests of the project
    ---
    parameters:
      - in: query
        name: status
        type: string
        enum: [active, completed, abandoned, all]
        default: active
      - in: query
        name: $top
        type: integer
        default: 20
    responses:
      200:
        description: Pull requests as returned by Azure DevOps
      400:
        description: $top is not a positive integer
    """
    try:
        status = request.args.get('status') or 'active'
        top = request.args.get('$top', '20')
        try:
            top = int(top)
        except ValueError:
            top = 0
        if top < 1:
            return jsonify({"error": "$top must be a positive integer"}), 400
        return jsonify(_service().get_pull_requests(status, top, project=_settings().pr_project or _settings().project)), 200
    except Exception as e:
        return _error_response(e, "Error fetching pull requests")


def create_app(settings: Optional[Settings] = None, service=None) -> Flask:
    """
    Build the Flask application

    Args:
        settings: Process settings; loaded from the environment when omitted
        service: Store client to use instead of building one from settings
    """
    if settings is None:
        settings = load_settings()

    flask_app = Flask(__name__)
    flask_app.config["SETTINGS"] = settings
    flask_app.config["ADO_SERVICE"] = service
    flask_app.register_blueprint(api)
    Swagger(flask_app, config=swagger_config, template=swagger_template)

    if not settings.configured:
        logger.warning("Azure DevOps is not configured; set ADO_ORG, ADO_PROJECT and ADO_PAT")
    else:
        logger.info(f"Configured for org: {settings.organization}, project: {settings.project}")
    return flask_app


if __name__ == '__main__':
    settings = load_settings()
    setup_logging(log_level=settings.log_level, log_dir=settings.log_dir)
    app = create_app(settings)
    app.run(host='0.0.0.0', port=settings.port, debug=False)
