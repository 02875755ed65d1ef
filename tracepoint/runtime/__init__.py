"""Runtime support for instrumented code: argument cache, wrappers, tracers, loader."""
