"""Wire-level constants shared with other components of the platform.

Label, annotation and resource coordinates are part of the external contract
and must stay byte-for-byte stable.
"""

from __future__ import annotations

from datetime import timedelta

# =============================================================================
# CRD Coordinates
# =============================================================================

API_GROUP = "greenhouse.sap"
API_VERSION = "v1alpha1"
GROUP_VERSION = f"{API_GROUP}/{API_VERSION}"

PLUGIN_KIND = "Plugin"
PLUGIN_PRESET_KIND = "PluginPreset"
PLUGIN_DEFINITION_KIND = "PluginDefinition"
CLUSTER_PLUGIN_DEFINITION_KIND = "ClusterPluginDefinition"
CLUSTER_KIND = "Cluster"
TEAM_KIND = "Team"

PLUGIN_PLURAL = "plugins"
PLUGIN_PRESET_PLURAL = "pluginpresets"
PLUGIN_DEFINITION_PLURAL = "plugindefinitions"
CLUSTER_PLUGIN_DEFINITION_PLURAL = "clusterplugindefinitions"
CLUSTER_PLURAL = "clusters"
TEAM_PLURAL = "teams"

# Kinds whose plural cannot be derived by lower-casing and appending "s"
KIND_PLURALS: dict[str, str] = {
    PLUGIN_KIND: PLUGIN_PLURAL,
    PLUGIN_PRESET_KIND: PLUGIN_PRESET_PLURAL,
    PLUGIN_DEFINITION_KIND: PLUGIN_DEFINITION_PLURAL,
    CLUSTER_PLUGIN_DEFINITION_KIND: CLUSTER_PLUGIN_DEFINITION_PLURAL,
    CLUSTER_KIND: CLUSTER_PLURAL,
    TEAM_KIND: TEAM_PLURAL,
}

# =============================================================================
# Labels
# =============================================================================

LABEL_PLUGIN_PRESET = "greenhouse.sap/pluginpreset"
LABEL_PLUGIN = "greenhouse.sap/plugin"
LABEL_PLUGIN_DEFINITION = "greenhouse.sap/plugindefinition"
LABEL_CLUSTER = "greenhouse.sap/cluster"
LABEL_UI_PLUGIN = "greenhouse.sap/ui-plugin"
LABEL_PLUGIN_EXPOSED_SERVICES = "greenhouse.sap/plugin-exposed-services"
LABEL_OWNED_BY = "greenhouse.sap/owned-by"
LABEL_PLUGIN_INTEGRATION = "greenhouse.sap/plugin-integration"
LABEL_VALUE_PLUGIN_INTEGRATION = "true"
LABEL_METADATA_PREFIX = "metadata.greenhouse.sap/"

# =============================================================================
# Annotations
# =============================================================================

ANNOTATION_PLUGIN_TRACKING_ID = "greenhouse.sap/plugin-tracking-id"
ANNOTATION_EXPOSE = "greenhouse.sap/expose"
ANNOTATION_EXPOSED_NAMED_PORT = "greenhouse.sap/exposed-named-port"
ANNOTATION_EXPOSED_HOST = "greenhouse.sap/exposed-host"
ANNOTATION_DELETION_SCHEDULE = "greenhouse.sap/deletion-schedule"
ANNOTATION_SUSPEND = "greenhouse.sap/suspend"
ANNOTATION_RECONCILE = "greenhouse.sap/reconcile"

TRACKING_SEPARATOR = ";"

# =============================================================================
# Lifecycle
# =============================================================================

FINALIZER = "greenhouse.sap/cleanup"

DELETION_POLICY_DELETE = "Delete"
DELETION_POLICY_RETAIN = "Retain"

HELM_RELEASE_SECRET_TYPE = "helm.sh/release.v1"

# Value prefix reserved for platform-injected option values
GLOBAL_VALUE_PREFIX = "global."
GREENHOUSE_VALUE_PREFIX = "global.greenhouse"

# =============================================================================
# Intervals
# =============================================================================

STATUS_REQUEUE_INTERVAL = timedelta(minutes=2)
UNINSTALL_REQUEUE_INTERVAL = timedelta(minutes=1)
DEPENDENCY_REQUEUE_INTERVAL = timedelta(seconds=30)
DRIFT_DETECTION_INTERVAL = timedelta(minutes=60)
PRESET_DELETION_REQUEUE_INTERVAL = timedelta(seconds=30)
