import argparse
from pathlib import Path

import yaml

from idea_refiner.main import app

if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Write the service OpenAPI schema as YAML")
    parser.add_argument(
        "--out",
        default=str(Path(__file__).resolve().parents[1] / "docs" / "openapi.yaml"),
    )
    args = parser.parse_args()

    out = Path(args.out)
    out.parent.mkdir(parents=True, exist_ok=True)
    out.write_text(yaml.safe_dump(app.openapi(), sort_keys=False, allow_unicode=True))
    print(f"Exported OpenAPI schema (YAML) to {out}")
