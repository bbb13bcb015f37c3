"""
infragraph Pulumi program: resolves one composition and declares its resources.
Reads the composition from COMPOSITION_YAML_PATH, variable overrides from the
stack config object infragraph:variables, and the region from aws:region.
"""
import pulumi

from infragraph.config import load_composition_config, pulumi_overrides
from infragraph.engine import run_pipeline
from infragraph.errors import InfragraphError
from infragraph.provision import materialize
from infragraph.provision.context import ProvisionContext

config = load_composition_config()
region = pulumi.Config("aws").require("region")

try:
    result = run_pipeline(config.composition, pulumi_overrides())
    ctx = ProvisionContext(composition_name=config.name, region=region)
    materialize(result, ctx)
except InfragraphError as e:
    raise SystemExit(f"[{e.stage}] {e}" if e.stage else str(e)) from e

for key, value in ctx.exports.items():
    pulumi.export(key, value)
