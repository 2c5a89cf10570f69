from flowtrace.monitor.stabilizer import MonitorState, StabilizationMonitor

__all__ = ["MonitorState", "StabilizationMonitor"]
