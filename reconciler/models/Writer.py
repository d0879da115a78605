import csv
import json
import os
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from reconciler.models.Claim import DistributionResult


@dataclass
class Writer:
    output_dir: str
    block: int

    @property
    def path(self) -> str:
        return f"{self.output_dir}/{self.block}"

    @property
    def artifact_path(self) -> str:
        return f"{self.path}/distribution.json"

    @property
    def csv_path(self) -> str:
        return f"{self.path}/claims.csv"

    @staticmethod
    def write_csv(data, path: str, fieldnames: list[str]) -> None:
        with open(path, "w+", newline="") as f:
            writer = csv.writer(f, delimiter=",")
            writer.writerow(fieldnames)

            for row in data:
                if not isinstance(row, dict):
                    writer.writerow([row])
                    continue
                flattened_row = []
                for _, v in row.items():
                    if isinstance(v, list):
                        flattened_row.append(" ".join(str(x) for x in v))
                    else:
                        flattened_row.append(v)
                writer.writerow(flattened_row)

    @staticmethod
    def write_json_atomic(data: Any, path: str) -> None:
        """
        Write to a temp file in the same directory, then rename over the target.
        A killed process leaves either the previous file or nothing, never half a file.
        """
        directory = os.path.dirname(path) or "."
        fd, tmp = tempfile.mkstemp(dir=directory, suffix=".tmp")
        try:
            with os.fdopen(fd, "w") as f:
                json.dump(data, f, indent=4)
            os.replace(tmp, path)
        except BaseException:
            if os.path.exists(tmp):
                os.remove(tmp)
            raise

    # create the directory in the reports folder if it doesn't exist
    def _create_dir(self) -> None:
        Path(self.path).mkdir(parents=True, exist_ok=True)

    def to_json(self, result: DistributionResult) -> str:
        self._create_dir()
        self.write_json_atomic(result.model_dump(mode="json"), self.artifact_path)
        return self.artifact_path

    def claims_to_csv(self, result: DistributionResult, path: str = "") -> str:
        path = path or self.csv_path
        Path(os.path.dirname(path) or ".").mkdir(parents=True, exist_ok=True)
        rows = [c.model_dump(mode="json") for c in result.claims]
        self.write_csv(rows, path, ["index", "account", "amount", "proof"])
        return path
