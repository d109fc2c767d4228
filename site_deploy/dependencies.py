from site_deploy.services.artifact_store import ArtifactStore
from site_deploy.services.reclamation import ArtifactReclaimer, TemporalArtifactReclaimer
from site_deploy.services.routing_index import RoutingIndex
from site_deploy.services.site_compiler import PageCompiler, render_page


def get_artifact_store() -> ArtifactStore:
    return ArtifactStore()


def get_routing_index() -> RoutingIndex:
    return RoutingIndex()


def get_page_compiler() -> PageCompiler:
    return render_page


def get_reclaimer() -> ArtifactReclaimer:
    return TemporalArtifactReclaimer()
