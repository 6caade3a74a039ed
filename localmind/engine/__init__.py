# Backend-agnostic inference engine
#
# One façade contract, three transports, one router in front of them.
#
# Key components:
#   - facades/      Per-backend EngineFacade implementations
#   - adapters/     On-device runtimes used by the accelerator worker
#   - router.py     BackendRouter (backend selection + hot-swap)
#   - protocol.py   Channel envelope (commands in, events out)
#   - phase.py      Reasoning/answer phase detection
#   - types.py      Engine request/result types
