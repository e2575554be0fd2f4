# hlexporter

A metrics exporter for Hyperliquid nodes. It follows the files that a node
writes under its home directory, queries the public validator API, and
publishes the results as Prometheus metrics. It can also push them over
OTLP/HTTP.

## What it reports

- Block height, time between blocks (histogram `hl_block_time_milliseconds`),
  apply duration (gauge `hl_apply_duration` and histogram
  `hl_apply_duration_milliseconds`) and latest block time. These come from
  `data/block_times`.
- Blocks proposed per validator (`hl_proposer_count_total`). These come from
  `data/replica_cmds`.
- EVM block height and EVM transaction count. These come from
  `data/dhs/EvmBlocks/hourly` and `data/dhs/EvmTxs/hourly`. The EVM monitors
  wait 60 seconds after start-up, then run only if the node is not a
  validator.
- The commit and build date of the node binary (`hl_software_version`). The
  binary is copied to `/tmp/hl_node_current` and run with `--version`.
- Whether that commit matches the latest released `hl-visor` binary
  (`hl_software_up_to_date`). The released binary is downloaded to
  `/tmp/hl-visor-latest` when it is needed, and at most once every five
  minutes.
- Stake, jailed status and active status for each validator, together with
  the total, jailed, not-jailed, active and inactive stake and the number of
  validators. These come from the `validatorSummaries` query of the public
  info API every five minutes.
- TCP connect time to the top 50 validators by stake (`hl_validator_rtt`),
  measured in microseconds on the first open port from 4000 to 4010. The
  validators' IPs and names come from the newest file in
  `data/periodic_abci_states`, which is translated with the node binary's
  `translate-abci-state` command.
- Whether this node is a validator, and its address. This comes from the last
  line of the newest file in `data/node_logs/status/hourly`.

Log files are followed from their end when the exporter starts. When the node
moves on to a newer file, that file is read from its beginning.

## Installation

```
pip install .
```

## Running

```
hl_exporter start [options]
```

| Option | Meaning |
| --- | --- |
| `--log-level` | `debug`, `info`, `warning` or `error`, case insensitive (default `info`) |
| `--enable-prom [BOOL]` | Serve Prometheus metrics (default true) |
| `--disable-prom [BOOL]` | Do not serve Prometheus metrics (default false) |
| `--enable-otlp [BOOL]` | Push metrics over OTLP/HTTP every 5 seconds (default false) |
| `--otlp-endpoint` | OTLP endpoint; a leading `http://` or `https://` is removed (default `otel.hyperliquid.validao.xyz`) |
| `--otlp-insecure [BOOL]` | Use plain HTTP instead of HTTPS for OTLP (default false) |
| `--node-home` | Node home directory |
| `--node-binary` | Path to the node binary |
| `--alias` | Name for this node. Required with `--enable-otlp`. |
| `--chain` | `mainnet` or `testnet`, case insensitive. Required with `--enable-otlp`. |

A boolean option given without a value means true. It also accepts `1`, `t`,
`true`, `0`, `f`, `false` and their capitalised forms. If the command or an
option is invalid, the exporter prints a message and exits with status 1.

At start-up the exporter asks `api.ipify.org` for the host's public IP, which
labels the exported metrics. If that request fails, the exporter exits with
status 1.

With Prometheus enabled, metrics are served at `http://<host>:8086/metrics`.
A `target_info` series carries the node's alias, job, server IP, validator
flag and validator address. OTLP export posts JSON to
`<endpoint>/v1/metrics`. An export that fails is logged, and export carries
on.

The exporter stops on SIGINT or SIGTERM. Log lines go to standard output,
except errors, which go to standard error.

## Configuration

Settings are read from the environment. A `.env` file in the working
directory is loaded first. Command-line flags override the environment.

- `NODE_HOME`: the node's home directory. The default is `$HOME/hl`.
- `BINARY_HOME`: the directory that holds the node binary. The default is `$HOME`.
- `NODE_BINARY`: the node binary. The default is `$BINARY_HOME/hl-node`.

## Use as a library

- `hlexporter.metrics.state.MetricsState` holds every reported value. Its
  setters include `set_block_height`, `set_validator_stake` and
  `record_block_time`. Its `meter` collects the current values.
- `hlexporter.metrics.exposition.render_prometheus(meter, resource)` renders
  those values in the Prometheus text format. `PrometheusServer` and
  `OTLPExporter` publish them.
- `hlexporter.monitors.tailing.DirectoryTailer` returns the complete lines
  appended to the newest file of a directory.
- `hlexporter.exporter.run_exporter(cfg, metrics, stop)` starts every monitor
  and logs their errors until the `threading.Event` `stop` is set.

## Limits

- OTLP metrics are sent as JSON over HTTP only. Protobuf and gRPC are not
  supported.
- If the Prometheus port cannot be bound, the error is logged and the
  exporter runs without the endpoint.
- The released binary used for the up-to-date check is always the Mainnet
  `hl-visor`.