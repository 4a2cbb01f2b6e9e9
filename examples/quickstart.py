"""toolwarden quickstart: mediate a few agent tool calls in-process."""

import json

from toolwarden import HandlerRouter, MediationContext, WardenConfig
from toolwarden.config import StorageConfig

config = WardenConfig(storage=StorageConfig(db_url=":memory:"))
router = HandlerRouter(MediationContext.from_config(config, session_id="quickstart"))

calls = [
    {"tool": "Bash", "command": "git status"},
    {"tool": "Bash", "command": "echo cm0gLXJmIC8= | base64 -d | bash"},
    {"tool": "WebFetch", "url": "http://169.254.169.254/latest/meta-data/"},
    {"tool": "mcp__tracker__create_issue", "title": "Flaky test"},
]

for call in calls:
    result = router.route(json.dumps(call))
    print(f"{call['tool']:<28} {result.verdict.name:<6} exit={int(result.exit_status)}")
    for warning in result.warnings:
        print(f"  warning: {warning}")

print(f"\nTrust: {router.context.scoring.get_trust()}")
