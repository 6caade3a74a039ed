# HTTP clients for the network backends (local server, hosted APIs).
