"""
Aurora Cluster Stack
Cluster, enhanced monitoring role, log groups and role associations from one plan
"""
import pulumi
from config import get_config, get_planning_context
from aurora import build_plan
from aurora.resources import declare_plan

# Configuration
config = get_config()
context = get_planning_context()

# 1. Plan: predicates, identifiers and references resolved without touching AWS
plan = build_plan(config.cluster_config(), context)

# 2. Declare the plan; the Pulumi engine diffs and converges it
declared = declare_plan(plan)

# Exports
for output_name, value in declared["outputs"].items():
    pulumi.export(output_name, value)
pulumi.export("planned_resources", list(plan.order))
