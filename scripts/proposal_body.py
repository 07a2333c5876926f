#!/usr/bin/env python3
"""
Render the Markdown body of the migration pull request.

The body only contains values taken from the trigger and the fetched object
metadata, so two runs against unchanged bucket contents render identically.
"""
from typing import Any, Dict, List

MISSING = "n/a"

HEADER = (
    ":robot: This is an automated pull request created from reaching the threshold "
    "of BNS names registered under the `.miner` namespace."
)
INTRO = (
    "This PR updates the chainstate file, chainstate consensus hash file, name_zonefile file, "
    "and name_zonefile consensus hash file to be used in the creation of the genesis block "
    "in the Stacks V2 network:"
)

def _size(value: str) -> str:
    return value if value == MISSING else f"{value} bytes"

def dataset_lines(item: Dict[str, Any], verify_url: str) -> List[str]:
    meta = item["meta"]
    return [
        f"* [{item['name']}]({item['url']})",
        f"    * Time created: `{meta['timeCreated']}`",
        f"    * File size: `{_size(meta['size'])}`",
        f"    * MD5 Hash: `{meta['md5Hash']}`",
        f"        * [Verify the MD5 hash with this script]({verify_url})",
        f"    * [Download file]({meta['mediaLink']})",
    ]

def render_body(block_height: int, datasets: List[Dict[str, Any]], cfg: Dict[str, Any]) -> str:
    """
    datasets: [{"name": ..., "url": ..., "meta": {timeCreated, size, md5Hash, mediaLink}}, ...]
    in the order they should be listed.
    """
    proj = cfg.get("project", {})
    base = cfg.get("pull_request", {}).get("base", "master")
    verify_url = proj.get("md5_verify_script_url", "")
    tag_url = proj.get("tag_workflow_url", "")

    lines = [HEADER, "", f"**Export triggered at block height: `{block_height}`**", "", INTRO]
    for item in datasets:
        lines += dataset_lines(item, verify_url)
    lines += [
        "",
        "Once merged, a new tag will need to be created. This can be done one of two ways:",
        f"* Trigger this [Github workflow]({tag_url}) from the `{base}` branch by selecting "
        "\"Run Workflow\", passing in the desired tag to be created as an argument",
        f"* Create the new tag from the `{base}` branch locally and push it up",
    ]
    return "\n".join(lines) + "\n"
