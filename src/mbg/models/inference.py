"""Delegated model fitting.

The pipeline does not implement spatial inference itself. It hands a
design matrix and the survey outcome to an inference backend and gets
back a Gaussian approximation of the posterior over the fixed effects:
a mean vector and a precision matrix. Any engine (INLA, Stan, a GP
library) can be plugged in by satisfying ``InferenceBackend``.

``LaplaceGLMBackend`` is the reference backend: a binomial (logit link)
or Poisson (log link, trials as exposure) GLM with independent Gaussian
priors on every coefficient, fitted at the posterior mode by Newton
optimisation. The precision is the Hessian of the negative log posterior
at the mode.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Protocol, runtime_checkable

import numpy as np
import pandas as pd
from scipy import optimize
from scipy.special import expit

__all__ = ['InferenceBackend', 'PosteriorFit', 'InferenceError', 'LaplaceGLMBackend', 'LINKS', 'resolve_backend']

logger = logging.getLogger(__name__)

# Inverse link used to turn linear predictors into cell draws
LINKS = {"binomial": "logit", "poisson": "log"}


class InferenceError(RuntimeError):
    """Reference backend failed to produce a usable posterior."""
    pass


@dataclass(frozen=True)
class PosteriorFit:
    """Gaussian posterior approximation over the model coefficients.

    Attributes
    ----------
    mean : np.ndarray
        (n_params,) posterior mode.
    precision : np.ndarray
        (n_params, n_params) inverse covariance.
    names : list of str
        Coefficient names, matching the design matrix columns.
    """
    mean: np.ndarray
    precision: np.ndarray
    names: List[str] = field(default_factory=list)

    @property
    def n_params(self) -> int:
        return self.mean.shape[0]

    def covariance(self) -> np.ndarray:
        return np.linalg.inv(self.precision)

    def to_frame(self) -> pd.DataFrame:
        """Coefficient table with posterior mean and standard deviation."""
        sd = np.sqrt(np.diag(self.covariance()))
        return pd.DataFrame({"mean": self.mean, "sd": sd}, index=pd.Index(self.names, name="term"))


@runtime_checkable
class InferenceBackend(Protocol):
    """Anything that turns a design matrix and outcomes into a PosteriorFit."""

    def fit(self, design: pd.DataFrame, outcome: np.ndarray, trials: np.ndarray) -> PosteriorFit:
        ...


class LaplaceGLMBackend:
    """Posterior-mode GLM with Gaussian priors.

    Example usage::

        backend = LaplaceGLMBackend(family="binomial", prior_sd=10.0)
        fit = backend.fit(design, data["indicator"], data["samplesize"])
    """

    def __init__(self, family: str = "binomial", prior_sd: float = 10.0,
                 max_iter: int = 200, tol: float = 1e-8):
        if family not in LINKS:
            raise ValueError(f"Unsupported family: {family}")
        self.family = family
        self.prior_precision = 1.0 / prior_sd ** 2
        self.max_iter = max_iter
        self.tol = tol

    @classmethod
    def from_config(cls, config) -> "LaplaceGLMBackend":
        """Build from ``InternalConfig.inference``."""
        inference = config.inference
        return cls(family=inference.family, prior_sd=inference.prior_sd,
                   max_iter=inference.max_iter, tol=inference.tol)

    @property
    def link(self) -> str:
        return LINKS[self.family]

    def fit(self, design: pd.DataFrame, outcome: np.ndarray, trials: np.ndarray) -> PosteriorFit:
        """Find the posterior mode and the precision at the mode.

        Parameters
        ----------
        design : pd.DataFrame
            (n_obs, n_params) design matrix; column names become
            coefficient names.
        outcome : array-like
            Positive counts per observation.
        trials : array-like
            Sample size (binomial) or exposure (Poisson) per observation.

        Raises
        ------
        ValueError
            Malformed inputs (length mismatch, non-finite values, outcome
            outside [0, trials] for the binomial family).
        InferenceError
            Optimiser did not converge.
        """
        names = [str(c) for c in getattr(design, "columns", range(np.shape(design)[1]))]
        X = np.asarray(design, dtype=np.float64)
        y = np.asarray(outcome, dtype=np.float64).reshape(-1)
        n = np.asarray(trials, dtype=np.float64).reshape(-1)
        self._check_inputs(X, y, n)

        objective, gradient, hessian = self._negative_log_posterior(X, y, n)
        beta0 = self._initial_guess(X, y, n)

        result = optimize.minimize(
            objective, beta0, method="Newton-CG", jac=gradient, hess=hessian,
            options={"maxiter": self.max_iter, "xtol": self.tol},
        )
        grad_norm = float(np.max(np.abs(gradient(result.x))))
        if not np.all(np.isfinite(result.x)) or (not result.success and grad_norm > 1e-4 * max(1.0, n.sum())):
            raise InferenceError(
                f"{self.family} GLM did not converge after {result.nit} iterations: "
                f"{result.message} (max |gradient| = {grad_norm:.3g})"
            )

        precision = hessian(result.x)
        logger.info("Fitted %s GLM: %d observations, %d coefficients, %d iterations",
                    self.family, X.shape[0], X.shape[1], result.nit)
        logger.debug("Posterior mode: %s", dict(zip(names, np.round(result.x, 4))))
        return PosteriorFit(mean=result.x, precision=precision, names=names)

    def _check_inputs(self, X: np.ndarray, y: np.ndarray, n: np.ndarray) -> None:
        if X.ndim != 2 or X.shape[0] == 0:
            raise ValueError(f"design matrix must be 2D with at least one row, got shape {X.shape}")
        if not (X.shape[0] == y.shape[0] == n.shape[0]):
            raise ValueError(
                f"length mismatch: design has {X.shape[0]} rows, outcome {y.shape[0]}, trials {n.shape[0]}"
            )
        if not (np.all(np.isfinite(X)) and np.all(np.isfinite(y)) and np.all(np.isfinite(n))):
            raise ValueError("design matrix, outcome and trials must be finite")
        if np.any(n <= 0) or np.any(y < 0):
            raise ValueError("trials must be positive and outcome non-negative")
        if self.family == "binomial" and np.any(y > n):
            raise ValueError("binomial outcome exceeds the number of trials")

    def _initial_guess(self, X: np.ndarray, y: np.ndarray, n: np.ndarray) -> np.ndarray:
        # Intercept-only start at the pooled rate
        rate = (y.sum() + 0.5) / (n.sum() + 1.0)
        eta = np.log(rate / (1.0 - rate)) if self.family == "binomial" else np.log(rate)
        beta0 = np.zeros(X.shape[1])
        constant = np.flatnonzero(np.all(X == 1.0, axis=0))
        if constant.size:
            beta0[constant[0]] = eta
        return beta0

    def _negative_log_posterior(self, X: np.ndarray, y: np.ndarray, n: np.ndarray):
        tau = self.prior_precision
        eye = np.eye(X.shape[1])

        if self.family == "binomial":
            def mean_and_weight(beta):
                p = expit(X @ beta)
                return n * p, n * p * (1.0 - p)

            def objective(beta):
                eta = X @ beta
                loglik = np.sum(y * eta - n * np.logaddexp(0.0, eta))
                return -loglik + 0.5 * tau * beta @ beta
        else:
            log_n = np.log(n)

            def mean_and_weight(beta):
                mu = np.exp(X @ beta + log_n)
                return mu, mu

            def objective(beta):
                eta = X @ beta + log_n
                loglik = np.sum(y * eta - np.exp(eta))
                return -loglik + 0.5 * tau * beta @ beta

        def gradient(beta):
            mu, _ = mean_and_weight(beta)
            return -X.T @ (y - mu) + tau * beta

        def hessian(beta):
            _, w = mean_and_weight(beta)
            return (X.T * w) @ X + tau * eye

        return objective, gradient, hessian


def resolve_backend(config, backend: Optional[InferenceBackend] = None) -> InferenceBackend:
    """Use the supplied backend or fall back to the reference GLM."""
    if backend is not None:
        return backend
    return LaplaceGLMBackend.from_config(config)
