"""
Governance Engine CLI

Command-line interface for proposing laws, voting and running the resolution
sweep against a local SQLite database.

Usage:
    govern init --db governance.db
    govern community create --id northmarch --governance monarchy
    govern member add --community northmarch --actor queen-ada --rank 0
    govern propose --community northmarch --actor queen-ada --law DECLARE_WAR \\
        --meta target_community_id=southreach
    govern vote --proposal <id> --actor queen-ada --choice yes
    govern sweep
"""

import json
import os
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator, List, Optional

import typer
from typing_extensions import Annotated

from governance_engine.directory import SQLiteDirectory, UnknownCommunity
from governance_engine.engine import GovernanceEngine
from governance_engine.health_server import initialize_health_server, run_health_server
from governance_engine.kernel.errors import GovernanceError
from governance_engine.kernel.logging import configure_logging
from governance_engine.kernel.metrics import start_metrics_server
from governance_engine.kernel.settings import EngineSettings
from governance_engine.laws.models import ProposalStatus

# Logs go to stderr so --json output on stdout stays parseable
configure_logging(log_level=os.getenv("GOVERNANCE_LOG_LEVEL") or "WARNING")

app = typer.Typer(
    name="govern",
    help="Governance engine - rank-gated law proposals and voting",
    add_completion=False,
)

# Sub-apps
community_app = typer.Typer(help="Community management commands")
member_app = typer.Typer(help="Membership commands")

app.add_typer(community_app, name="community")
app.add_typer(member_app, name="member")

DEFAULT_DB = Path(".governance.db")

DbOption = Annotated[Optional[Path], typer.Option("--db", help="Database path")]
JsonOption = Annotated[bool, typer.Option("--json", help="Output as JSON")]


def get_directory(db_path: Optional[Path] = None) -> SQLiteDirectory:
    db = db_path or DEFAULT_DB
    if not db.exists():
        typer.echo(f"Error: Database not found: {db}", err=True)
        typer.echo(f"Run 'govern init --db {db}' to initialize", err=True)
        raise typer.Exit(1)
    return SQLiteDirectory(db)


def get_engine(db_path: Optional[Path] = None) -> GovernanceEngine:
    """Engine over the local directory, honouring GOVERNANCE_* settings"""
    directory = get_directory(db_path)
    settings = EngineSettings.from_env(db_path=directory.db_path)
    return GovernanceEngine.with_directory(directory, settings=settings)


@contextmanager
def governance_errors() -> Iterator[None]:
    """Turn refused operations into a one-line error and exit code 1"""
    try:
        yield
    except (GovernanceError, ValueError) as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1) from e


def parse_metadata(pairs: list[str], raw_json: Optional[str]) -> dict[str, Any]:
    """
    Merge --metadata JSON with repeated --meta key=value pairs

    Values are read as JSON when they parse (numbers, booleans), otherwise
    kept as strings.
    """
    metadata: dict[str, Any] = json.loads(raw_json) if raw_json else {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            raise typer.BadParameter(f"Expected key=value, got {pair!r}", param_hint="--meta")
        try:
            metadata[key] = json.loads(value)
        except json.JSONDecodeError:
            metadata[key] = value
    return metadata


# Initialization command


@app.command()
def init(
    db: Annotated[Path, typer.Option(help="Database path")] = DEFAULT_DB,
) -> None:
    """Initialize a new governance database"""
    if db.exists():
        typer.echo(f"Error: Database already exists: {db}", err=True)
        raise typer.Exit(1)

    directory = SQLiteDirectory(db)
    GovernanceEngine.with_directory(directory, settings=EngineSettings(db_path=db))
    typer.echo(f"✓ Initialized governance database: {db}")


# Community commands


@community_app.command("create")
def community_create(
    community_id: Annotated[str, typer.Option("--id", help="Community ID")],
    name: Annotated[Optional[str], typer.Option("--name", help="Display name")] = None,
    governance: Annotated[
        str, typer.Option("--governance", help="Governance kind (monarchy, democracy)")
    ] = "monarchy",
    db: DbOption = None,
) -> None:
    """Create a community"""
    directory = get_directory(db)
    with governance_errors():
        community = directory.create_community(community_id, name, governance)
    typer.echo(f"✓ Created community: {community.community_id}")
    typer.echo(f"  Governance: {community.governance_kind}")


@community_app.command("show")
def community_show(
    community_id: Annotated[str, typer.Option("--id", help="Community ID")],
    json_output: JsonOption = False,
    db: DbOption = None,
) -> None:
    """Show a community's settings and members"""
    directory = get_directory(db)
    community = directory.get_community(community_id)
    if community is None:
        typer.echo(f"Error: {UnknownCommunity(community_id)}", err=True)
        raise typer.Exit(1)
    members = directory.list_members(community_id)

    if json_output:
        data = community.model_dump(mode="json")
        data["members"] = [member.model_dump() for member in members]
        typer.echo(json.dumps(data, indent=2, default=str))
        return

    typer.echo(f"Community {community.community_id} ({community.name})")
    typer.echo(f"  Governance: {community.governance_kind}")
    if community.successor_id:
        typer.echo(f"  Successor: {community.successor_id}")
    if community.announcement_title:
        typer.echo(f"  Announcement: {community.announcement_title}")
    if community.work_tax_rate is not None:
        typer.echo(f"  Work tax: {community.work_tax_rate:.2%}")
    if community.import_tariff_rate is not None:
        typer.echo(f"  Import tariff: {community.import_tariff_rate:.2%}")
    typer.echo(f"  Members ({len(members)}):")
    for member in members:
        typer.echo(f"    {member.actor_id} (rank {member.rank})")


# Member commands


@member_app.command("add")
def member_add(
    community: Annotated[str, typer.Option("--community", help="Community ID")],
    actor: Annotated[str, typer.Option("--actor", help="Member ID")],
    rank: Annotated[int, typer.Option("--rank", help="Rank tier (0 = sovereign)")],
    db: DbOption = None,
) -> None:
    """Add a member (or change their rank)"""
    directory = get_directory(db)
    with governance_errors():
        member = directory.add_member(community, actor, rank)
    typer.echo(f"✓ {member.actor_id} is rank {member.rank} in {member.community_id}")


# Law commands


@app.command()
def laws(
    community: Annotated[str, typer.Option("--community", help="Community ID")],
    actor: Annotated[
        Optional[str], typer.Option("--actor", help="Only laws this member may propose")
    ] = None,
    json_output: JsonOption = False,
    db: DbOption = None,
) -> None:
    """List laws available in a community"""
    engine = get_engine(db)
    with governance_errors():
        definitions = engine.list_available_laws(community, actor)
        governance_kind = engine.communities.get_governance_kind(community)
        rules = [engine.registry.get_rule(d.law_kind, governance_kind) for d in definitions]

    if json_output:
        typer.echo(
            json.dumps(
                [
                    {
                        "law_kind": rule.law_kind,
                        "label": definition.label,
                        "description": definition.description,
                        "passing_condition": rule.passing_condition.value,
                        "voting_window_seconds": int(rule.voting_window.total_seconds()),
                        "can_fast_track": rule.can_fast_track,
                        "required_metadata_fields": sorted(rule.required_metadata_fields),
                    }
                    for definition, rule in zip(definitions, rules)
                ],
                indent=2,
            )
        )
        return

    if not definitions:
        typer.echo("No laws available")
        return
    typer.echo(f"Laws available under {governance_kind} ({len(definitions)}):")
    for definition, rule in zip(definitions, rules):
        typer.echo(f"  {definition.law_kind}: {definition.label}")
        typer.echo(
            f"    {rule.passing_condition.value}, window {rule.voting_window}, "
            f"needs {', '.join(sorted(rule.required_metadata_fields)) or 'nothing'}"
        )


@app.command()
def propose(
    community: Annotated[str, typer.Option("--community", help="Community ID")],
    actor: Annotated[str, typer.Option("--actor", help="Proposing member")],
    law: Annotated[str, typer.Option("--law", help="Law kind, e.g. DECLARE_WAR")],
    meta: Annotated[
        Optional[List[str]],
        typer.Option("--meta", help="Metadata key=value (repeatable)"),
    ] = None,
    metadata_json: Annotated[
        Optional[str], typer.Option("--metadata", help="Metadata (JSON object)")
    ] = None,
    db: DbOption = None,
) -> None:
    """Propose a law"""
    engine = get_engine(db)
    metadata = parse_metadata(meta or [], metadata_json)
    with governance_errors():
        proposal = engine.propose_law(community, actor, law, metadata)

    typer.echo(f"✓ Proposed {proposal.law_kind}: {proposal.proposal_id}")
    typer.echo(f"  Status: {proposal.status.value}")
    if proposal.is_pending():
        typer.echo(f"  Voting closes: {proposal.expires_at.isoformat()}")
    elif proposal.execution_status is not None:
        typer.echo(f"  Execution: {proposal.execution_status.value}")


@app.command()
def vote(
    proposal: Annotated[str, typer.Option("--proposal", help="Proposal ID")],
    actor: Annotated[str, typer.Option("--actor", help="Voting member")],
    choice: Annotated[str, typer.Option("--choice", help="yes or no")],
    db: DbOption = None,
) -> None:
    """Vote on a pending proposal"""
    engine = get_engine(db)
    with governance_errors():
        cast = engine.cast_vote(proposal, actor, choice)
        tally = engine.tally(proposal)
    typer.echo(f"✓ Recorded {cast.choice.value} from {cast.voter_id}")
    typer.echo(f"  Tally: {tally.summary()}")


@app.command("fast-track")
def fast_track(
    proposal: Annotated[str, typer.Option("--proposal", help="Proposal ID")],
    actor: Annotated[str, typer.Option("--actor", help="Sovereign member")],
    db: DbOption = None,
) -> None:
    """Pass a proposal immediately (sovereign only)"""
    engine = get_engine(db)
    with governance_errors():
        passed = engine.fast_track(proposal, actor)
    typer.echo(f"✓ Fast-tracked {passed.law_kind}: {passed.proposal_id}")
    if passed.execution_status is not None:
        typer.echo(f"  Execution: {passed.execution_status.value}")


@app.command()
def proposals(
    community: Annotated[str, typer.Option("--community", help="Community ID")],
    status: Annotated[
        Optional[str], typer.Option("--status", help="PENDING, PASSED or REJECTED")
    ] = None,
    json_output: JsonOption = False,
    db: DbOption = None,
) -> None:
    """List proposals in a community"""
    engine = get_engine(db)
    with governance_errors():
        views = engine.list_proposals(community, ProposalStatus(status.upper()) if status else None)

    if json_output:
        typer.echo(
            json.dumps([view.model_dump(mode="json") for view in views], indent=2, default=str)
        )
        return

    if not views:
        typer.echo("No proposals")
        return
    typer.echo(f"Proposals ({len(views)}):")
    for view in views:
        p = view.proposal
        typer.echo(f"  {p.proposal_id}: {p.law_kind} [{p.status.value}]")
        typer.echo(f"    Proposed by {p.proposer_id}, {view.tally.summary()}")


@app.command()
def show(
    proposal: Annotated[str, typer.Option("--proposal", help="Proposal ID")],
    json_output: JsonOption = False,
    db: DbOption = None,
) -> None:
    """Show a proposal with its votes and audit trail"""
    engine = get_engine(db)
    with governance_errors():
        details = engine.get_proposal_details(proposal)

    if json_output:
        typer.echo(json.dumps(details, indent=2, default=str))
        return

    p = details["proposal"]
    tally = details["tally"]
    typer.echo(f"Proposal {p['proposal_id']}")
    typer.echo(f"  Law: {p['law_kind']} ({p['governance_kind']})")
    typer.echo(f"  Status: {p['status']}")
    typer.echo(f"  Proposer: {p['proposer_id']}")
    typer.echo(f"  Metadata: {json.dumps(p['metadata'])}")
    typer.echo(f"  Expires: {p['expires_at']}")
    typer.echo(
        f"  Tally: {tally['yes']} yes, {tally['no']} no "
        f"of {tally['eligible_voter_count']} eligible"
    )
    if p["resolution_notes"]:
        typer.echo(f"  Notes: {p['resolution_notes']}")
    if p["execution_status"]:
        typer.echo(f"  Execution: {p['execution_status']}")
    typer.echo(f"  Events ({len(details['events'])}):")
    for event in details["events"]:
        typer.echo(f"    {event['occurred_at']} {event['event_type']}")


# Resolution commands


@app.command()
def sweep(
    limit: Annotated[
        Optional[int], typer.Option("--limit", help="Batch size", min=1)
    ] = None,
    db: DbOption = None,
) -> None:
    """Resolve proposals whose voting window has closed"""
    engine = get_engine(db)
    result = engine.sweep(limit)

    typer.echo(f"✓ {result.summary()}")
    if result.has_more:
        typer.echo("  Batch full - run again to continue")


@app.command()
def retry(
    proposal: Annotated[
        Optional[str], typer.Option("--proposal", help="Retry one proposal only")
    ] = None,
    db: DbOption = None,
) -> None:
    """Retry failed law executions"""
    engine = get_engine(db)
    with governance_errors():
        if proposal:
            outcome = engine.retry_execution(proposal)
            outcomes = [outcome] if outcome is not None else []
        else:
            outcomes = engine.retry_failed_executions()

    if not outcomes:
        typer.echo("No failed executions to retry")
        return
    for outcome in outcomes:
        typer.echo(f"  {outcome.proposal_id}: {outcome.status.value}")
        if outcome.detail:
            typer.echo(f"    {outcome.detail}")


@app.command()
def serve(
    port: Annotated[int, typer.Option("--port", help="Health server port")] = 8080,
    metrics_port: Annotated[
        Optional[int], typer.Option("--metrics-port", help="Prometheus metrics port")
    ] = None,
    db: DbOption = None,
) -> None:
    """Run the health check server (and optionally the metrics endpoint)"""
    directory = get_directory(db)
    if metrics_port is not None:
        start_metrics_server(metrics_port)
        typer.echo(f"✓ Metrics on :{metrics_port}/metrics")
    initialize_health_server(directory.db_path)
    run_health_server(port=port)


def main() -> None:
    """Main entry point"""
    app()


if __name__ == "__main__":
    main()
