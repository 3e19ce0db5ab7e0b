import logging
from typing import Optional

import typer

from kubeprep.config import Config
from kubeprep.logging import setup_logging
from kubeprep.modules.provision import (
    CommandRunner,
    HostState,
    NodeConfig,
    NodeRole,
    ProvisioningError,
    ProvisioningPipeline,
    VersionPins,
)
from kubeprep.utils.http import HttpClient

app = typer.Typer(add_completion=False)

logger = logging.getLogger("kubeprep.cli")


def _show_help(ctx: typer.Context, value: bool):
    """Print usage and exit non-zero, the same exit path as a usage error."""
    if value:
        typer.echo(ctx.get_help())
        raise typer.Exit(code=1)


def _parse_role(value: str) -> NodeRole:
    try:
        return NodeRole.from_flag(value)
    except ValueError:
        raise typer.BadParameter("must be 'yes' or 'no'")


def _parse_hostname(value: str) -> str:
    if not value or not value.strip():
        raise typer.BadParameter("hostname cannot be empty")
    return value.strip()


@app.command(add_help_option=False)
def main(
    hostname: str = typer.Option(..., "--hostname", callback=_parse_hostname,
                                 help="Hostname to set for this node."),
    control_plane: str = typer.Option(..., "--control-plane", metavar="yes|no", callback=_parse_role,
                                      help="Specify if this is a control plane node (yes or no)."),
    debug: bool = typer.Option(False, "--debug", "-d", help="Enable debug logging"),
    containerd_version: Optional[str] = typer.Option(
        Config.CONTAINERD_VERSION, "--containerd-version", help="Pin containerd instead of using the latest release"),
    runc_version: Optional[str] = typer.Option(
        Config.RUNC_VERSION, "--runc-version", help="Pin runc instead of using the latest release"),
    cni_version: Optional[str] = typer.Option(
        Config.CNI_PLUGINS_VERSION, "--cni-version", help="Pin the CNI plugins instead of using the latest release"),
    kubernetes_version: Optional[str] = typer.Option(
        Config.KUBERNETES_VERSION, "--kubernetes-version", help="Pin the Kubernetes track (e.g. 1.31)"),
    show_help: bool = typer.Option(False, "--help", "-h", is_eager=True, expose_value=False,
                              callback=_show_help, help="Show this message and exit."),
):
    """Prepare this host as a Kubernetes control-plane or worker node."""
    setup_logging(debug)
    role: NodeRole = control_plane

    try:
        Config.validate()
    except ValueError as e:
        logger.error(f"❌ configuration: {e}")
        raise typer.Exit(code=1)

    runner = CommandRunner()
    pipeline = ProvisioningPipeline(
        host=HostState(runner),
        runner=runner,
        http=HttpClient(),
        pins=VersionPins(
            containerd=containerd_version,
            runc=runc_version,
            cni_plugins=cni_version,
            kubernetes=kubernetes_version,
        ),
    )

    try:
        pipeline.run(NodeConfig(hostname=hostname, role=role))
    except ProvisioningError as e:
        logger.error(f"❌ {e.category}: {e}")
        logger.debug("Failure details", exc_info=True)
        raise typer.Exit(code=1)


if __name__ == "__main__":
    app()
