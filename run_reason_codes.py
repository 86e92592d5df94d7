#!/usr/bin/env python3

import argparse
import json
import logging

import joblib

from Datasets_prepration.Tabular import load_dataset
from Surrogate_Methods.Config import ExplainerConfig
from Surrogate_Methods.Data_Model import as_predict_fn
from Surrogate_Methods.Pipeline import explain_region, reason_code_records, surrogate_record


def run(data, target, model_path, rule, config_path=None, output=None, top_k=None, categorical=None):
    """
    Fit a region surrogate for a pickled model and write its reason codes as JSON.

    Returns:
        dict: the surrogate and its reason-code records
    """
    config = ExplainerConfig.from_yaml(config_path) if config_path else ExplainerConfig()
    dataset = load_dataset(data, target, categorical=categorical)
    model = joblib.load(model_path)
    predict_fn = as_predict_fn(model, config.task, dataset.feature_names)

    result = explain_region(dataset, predict_fn, rule, config)
    payload = {
        "rule": result.region.rule,
        "excluded": list(result.excluded),
        "correlated_pairs": [
            {"a": p.a, "b": p.b, "value": p.value} for p in result.correlation
        ],
        "surrogate": surrogate_record(result.surrogate),
        "reason_codes": reason_code_records(result, top_k=top_k or config.top_k),
    }
    if output:
        with open(output, "w") as f:
            json.dump(payload, f, indent=2, default=str)
        logging.getLogger(__name__).info(f"Saved: {output}")
    return payload


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(message)s")

    parser = argparse.ArgumentParser(description="Region surrogate reason codes for a black-box model")
    parser.add_argument("--data", required=True, help="CSV file with features and target")
    parser.add_argument("--target", required=True, help="Target column name")
    parser.add_argument("--model", required=True, help="joblib-pickled model exposing predict / predict_proba")
    parser.add_argument("--rule", required=True, help="Region rule, e.g. \"Pos == 'QB'\"")
    parser.add_argument("--config", default=None, help="YAML configuration file")
    parser.add_argument("--output", default=None, help="Where to write the JSON result")
    parser.add_argument("--top-k", type=int, default=None, help="Reason codes per record")
    parser.add_argument("--categorical", nargs="*", default=None, help="Categorical feature names")
    args = parser.parse_args()

    payload = run(
        args.data,
        args.target,
        args.model,
        args.rule,
        config_path=args.config,
        output=args.output,
        top_k=args.top_k,
        categorical=args.categorical,
    )
    if not args.output:
        print(json.dumps(payload, indent=2, default=str))
