from ..core.metrics_tags import MetricsEndpoint, MetricsTagParser
from ..core.models import METRICS_NAME_LABEL, METRICS_PATH_LABEL, ScrapeTarget
from ..core.tag_resolver import sanitize_label_name
from .base import DiscoveryContext, DiscoveryProcessor, DiscoveryStage


class AssembleTargetsProcessor(DiscoveryProcessor):
    """
    Turns resolved instances into scrape targets, one per metrics endpoint.

    Instances without a valid endpoint are dropped, unless a default
    metrics port is configured, in which case they are scraped on that
    port at the default path.
    """

    stage = DiscoveryStage.ASSEMBLING

    def process(self, context: DiscoveryContext) -> None:
        options = context.options
        parser = MetricsTagParser(options.metrics_tag_prefix)
        dropped = 0

        for instance_id in sorted(context.resolved):
            resolved = context.resolved[instance_id]
            instance = context.instances[instance_id]

            extraction = parser.parse(resolved.metrics_tags, resource_id=instance_id)
            for warning in extraction.warnings:
                context.warnings.append(warning)
                self.logger.warning("Invalid metrics tag", extra={"instance_id": instance_id, "warning": warning})

            endpoints = extraction.endpoints
            if not endpoints and options.default_metrics_port:
                endpoints = [MetricsEndpoint(port=options.default_metrics_port)]
            if not endpoints:
                dropped += 1
                continue

            for endpoint in endpoints:
                labels = dict(resolved.labels)
                labels[METRICS_PATH_LABEL] = endpoint.path
                if endpoint.name:
                    labels[METRICS_NAME_LABEL] = endpoint.name
                # Operator supplied labels always win
                for key, value in options.extra_labels.items():
                    labels[sanitize_label_name(key)] = value

                context.targets.append(ScrapeTarget(
                    address=f"{instance.address}:{endpoint.port}",
                    labels=labels,
                    source_id=instance_id,
                ))

        context.targets.sort(key=lambda t: (t.source_id, t.address, t.labels.get(METRICS_PATH_LABEL, "")))
        self.logger.info(
            "Targets assembled",
            extra={"targets": len(context.targets), "instances_without_endpoints": dropped},
        )
