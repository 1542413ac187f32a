"""Impostor Monitoring Component - lookalike discovery, scanning and evidence.

## Overview

Generates lookalike ("impostor") domains for every monitored root domain,
probes them for DNS records, keeps each on a staggered rescan schedule and
captures a screenshot the first time an impostor is seen live.

## Pipeline

1. **Variant generation** - TLD swaps, Cyrillic homoglyphs (punycode),
   adjacent-key typos, omissions, repetitions, transpositions and
   phishing keywords, each with a 1-99 confidence.
2. **Scan orchestration** - generation for new/reset domains, on-demand
   rescans, and an hourly sweep of records due for rescan.
3. **Screenshot queue** - one capture per minute with a Safe Browsing aware
   two-pass render and a lease that requeues abandoned captures.

## Package Structure

- `models.py` - typed views of stored documents
- `variant_generator.py` - candidate generation and confidence scoring
- `change_feed.py` - polling subscriptions over the document store
- `orchestrator.py` - scan triggers A-D
- `screenshot_queue.py` - evidence capture loop
- `config.py` - collaborator construction from `my_config`

## Usage

```python
from src.components.impostor_monitoring import MonitoringContext

ctx = MonitoringContext()
ctx.orchestrator.add_monitored_domain("example.com", "analyst@example.com")
ctx.feed.poll()                  # generation + initial scan
ctx.orchestrator.run_due_sweep() # periodic rescans
ctx.screenshots.tick()           # one evidence capture
```
"""

from .config import MonitoringContext
from .orchestrator import ScanOrchestrator
from .screenshot_queue import ScreenshotQueueProcessor
from .variant_generator import ImpostorCandidate, generate_impostors

__all__ = [
    "MonitoringContext",
    "ScanOrchestrator",
    "ScreenshotQueueProcessor",
    "ImpostorCandidate",
    "generate_impostors",
]
