"""
survey_design.py - Design-based estimation for complex survey samples

MEPS uses a stratified, clustered sample. Point estimates only need the
weights, but standard errors must account for strata and primary sampling
units (PSUs); WLS or one-way clustered errors understate or misstate them.

Every estimate in the pipeline goes through a SurveyDesign:
- total() / mean(): weighted totals and means, optionally by domain
- wls(): weighted linear regression with a design-based covariance matrix

Variance uses Taylor linearization with PSUs treated as sampled with
replacement within strata (no finite population correction):

    V = sum_h n_h / (n_h - 1) * sum_i (z_hi - zbar_h)(z_hi - zbar_h)'

where z_hi are PSU totals of the linearized scores. Subgroup estimates are
domain estimates: records outside the domain contribute zero scores but keep
their PSU in the design.

Strata with a single PSU have no within-stratum variance. lonely_psu controls
what happens:
- 'adjust': center the lonely PSU on the grand mean of all PSU totals
- 'remove': the stratum contributes nothing
- 'fail': raise ValueError when the design is built

Date: 2026
"""

import numpy as np
import pandas as pd
import patsy
import statsmodels.api as sm
from scipy import stats

LONELY_PSU_OPTIONS = ('adjust', 'remove', 'fail')


class SurveyDesign:
    """
    Bind a person-level table to its weights, strata and clusters.

    PSU codes are nested within strata (MEPS reuses PSU numbers across
    strata). The table is copied on construction and never modified.
    """

    def __init__(self, data, weights, strata, cluster, lonely_psu='adjust'):
        if lonely_psu not in LONELY_PSU_OPTIONS:
            raise ValueError(f"lonely_psu must be one of {LONELY_PSU_OPTIONS}, got {lonely_psu!r}")

        missing = [c for c in (weights, strata, cluster) if c not in data.columns]
        if missing:
            raise KeyError(f"Design columns not found in data: {missing}")
        if data[[weights, strata, cluster]].isna().any().any():
            raise ValueError("Design columns (weights, strata, cluster) contain missing values")
        if (data[weights] < 0).any():
            raise ValueError("Survey weights must be non-negative")

        self.weights = weights
        self.strata = strata
        self.cluster = cluster
        self.lonely_psu = lonely_psu

        self._data = data.reset_index(drop=True).copy()
        self._w = self._data[weights].to_numpy(dtype=float)

        # One code per (stratum, PSU) pair, and the stratum each PSU belongs to
        self._psu_codes = self._data.groupby([strata, cluster], sort=True).ngroup().to_numpy()
        psu_index = (
            self._data[[strata, cluster]]
            .drop_duplicates()
            .sort_values([strata, cluster])
            .reset_index(drop=True)
        )
        self._psu_stratum = pd.factorize(psu_index[strata], sort=True)[0]

        self.n_psu = len(psu_index)
        self.n_strata = int(self._psu_stratum.max()) + 1 if self.n_psu else 0

        psu_per_stratum = np.bincount(self._psu_stratum, minlength=self.n_strata)
        self.singleton_strata = psu_index[strata].unique()[psu_per_stratum == 1].tolist()
        if self.singleton_strata and lonely_psu == 'fail':
            raise ValueError(
                f"{len(self.singleton_strata)} strata have a single PSU: "
                f"{self.singleton_strata[:10]}"
            )

    def __repr__(self):
        return (f"SurveyDesign(n={len(self._data):,}, strata={self.n_strata}, "
                f"psus={self.n_psu}, lonely_psu={self.lonely_psu!r})")

    def __len__(self):
        return len(self._data)

    @property
    def data(self):
        """A copy of the underlying table."""
        return self._data.copy()

    @property
    def degf(self):
        """Design degrees of freedom: number of PSUs minus number of strata."""
        return self.n_psu - self.n_strata

    # =========================================================================
    # Variance
    # =========================================================================

    def variance(self, scores):
        """
        Design-based variance of the sum of linearized scores.

        Args:
            scores: array of shape (n,) or (n, k), one row per record

        Returns:
            (k, k) covariance matrix
        """
        scores = np.asarray(scores, dtype=float)
        if scores.ndim == 1:
            scores = scores[:, None]
        if scores.shape[0] != len(self._data):
            raise ValueError(f"Expected {len(self._data)} score rows, got {scores.shape[0]}")

        k = scores.shape[1]
        psu_totals = np.zeros((self.n_psu, k))
        np.add.at(psu_totals, self._psu_codes, scores)

        grand_mean = psu_totals.mean(axis=0)
        cov = np.zeros((k, k))
        for h in range(self.n_strata):
            totals = psu_totals[self._psu_stratum == h]
            n_h = len(totals)
            if n_h == 1:
                if self.lonely_psu == 'adjust':
                    dev = totals - grand_mean
                    cov += dev.T @ dev
                continue
            dev = totals - totals.mean(axis=0)
            cov += n_h / (n_h - 1) * (dev.T @ dev)
        return cov

    def _domains(self, by):
        """Yield (key, boolean mask) for each domain; a single key when by is None."""
        if by is None:
            yield None, np.ones(len(self._data), dtype=bool)
            return
        by = [by] if isinstance(by, str) else list(by)
        indices = self._data.groupby(by, sort=True).indices
        for key in sorted(indices):
            mask = np.zeros(len(self._data), dtype=bool)
            mask[indices[key]] = True
            yield key, mask

    def _estimate_frame(self, rows, by, name):
        out = pd.DataFrame(rows)
        t_crit = stats.t.ppf(0.975, self.degf)
        out['ci_lower'] = out[name] - t_crit * out['se']
        out['ci_upper'] = out[name] + t_crit * out['se']
        if by is not None:
            by = [by] if isinstance(by, str) else list(by)
            keys = out.pop('key')
            keys = [k if isinstance(k, tuple) else (k,) for k in keys]
            out = pd.concat([pd.DataFrame(keys, columns=by), out], axis=1)
        else:
            out = out.drop(columns='key')
        return out

    # =========================================================================
    # Descriptive estimates
    # =========================================================================

    def total(self, var=None, by=None):
        """
        Weighted population total of var (or population size if var is None).

        Returns a DataFrame with one row per domain: total, se, n, ci bounds.
        """
        y = np.ones(len(self._data)) if var is None else self._data[var].to_numpy(dtype=float)
        valid = np.isfinite(y)

        rows = []
        for key, mask in self._domains(by):
            d = mask & valid
            z = np.where(d, self._w * np.where(valid, y, 0.0), 0.0)
            se = float(np.sqrt(self.variance(z)[0, 0]))
            rows.append({'key': key, 'total': float(z.sum()), 'se': se, 'n': int(d.sum())})
        return self._estimate_frame(rows, by, 'total')

    def mean(self, var, by=None):
        """
        Weighted mean of var (ratio estimator), optionally by domain.

        Records with a missing var are left out of the domain.
        """
        y = self._data[var].to_numpy(dtype=float)
        valid = np.isfinite(y)
        y0 = np.where(valid, y, 0.0)

        rows = []
        for key, mask in self._domains(by):
            d = mask & valid
            w_d = np.where(d, self._w, 0.0)
            w_sum = w_d.sum()
            if w_sum <= 0:
                rows.append({'key': key, 'mean': np.nan, 'se': np.nan, 'n': int(d.sum())})
                continue
            est = float((w_d * y0).sum() / w_sum)
            z = w_d * (y0 - est) / w_sum
            se = float(np.sqrt(self.variance(z)[0, 0]))
            rows.append({'key': key, 'mean': est, 'se': se, 'n': int(d.sum())})
        return self._estimate_frame(rows, by, 'mean')

    # =========================================================================
    # Regression
    # =========================================================================

    def wls(self, formula):
        """
        Survey-weighted linear regression.

        Coefficients come from statsmodels WLS on the design weights; the
        covariance matrix is the linearized sandwich
        (X'WX)^-1 V(sum w_i x_i e_i) (X'WX)^-1. Rows dropped for missing
        values are treated as outside the estimation domain.
        """
        y, X = patsy.dmatrices(formula, self._data, return_type='dataframe', NA_action='drop')
        rows = X.index.to_numpy()
        w = self._w[rows]

        wls_fit = sm.WLS(y.iloc[:, 0], X, weights=w).fit()

        x = X.to_numpy(dtype=float)
        resid = y.iloc[:, 0].to_numpy(dtype=float) - x @ wls_fit.params.to_numpy()
        scores = np.zeros((len(self._data), x.shape[1]))
        scores[rows] = x * (w * resid)[:, None]

        bread = np.linalg.inv(x.T @ (w[:, None] * x))
        cov = bread @ self.variance(scores) @ bread

        return SurveyRegressionResult(
            params=wls_fit.params.copy(),
            cov=pd.DataFrame(cov, index=X.columns, columns=X.columns),
            df_resid=self.degf + 1 - x.shape[1],
            design=self,
            formula=formula,
            design_info=X.design_info,
            rows=rows,
            wls_fit=wls_fit,
        )


class SurveyRegressionResult:
    """
    Coefficients, design-based covariance, residual df and the design.

    Confidence intervals and contrasts use the t distribution with
    df_resid = design df + 1 - number of coefficients.
    """

    def __init__(self, params, cov, df_resid, design, formula, design_info, rows, wls_fit):
        self.params = params
        self.cov = cov
        self.df_resid = df_resid
        self.design = design
        self.formula = formula
        self.design_info = design_info
        self.rows = rows
        self.wls_fit = wls_fit

    @property
    def nobs(self):
        return len(self.rows)

    @property
    def bse(self):
        return pd.Series(np.sqrt(np.diag(self.cov)), index=self.params.index)

    @property
    def tvalues(self):
        return self.params / self.bse

    @property
    def pvalues(self):
        return pd.Series(2 * stats.t.sf(np.abs(self.tvalues), self.df_resid),
                         index=self.params.index)

    def conf_int(self, alpha=0.05):
        t_crit = stats.t.ppf(1 - alpha / 2, self.df_resid)
        return pd.DataFrame({
            'ci_lower': self.params - t_crit * self.bse,
            'ci_upper': self.params + t_crit * self.bse,
        })

    def summary_frame(self, alpha=0.05):
        """Coefficient table: estimate, se, t, p, ci bounds."""
        out = pd.DataFrame({
            'estimate': self.params,
            'se': self.bse,
            't': self.tvalues,
            'p_value': self.pvalues,
        })
        out = out.join(self.conf_int(alpha))
        out.index.name = 'term'
        return out.reset_index()

    def exog(self, newdata):
        """Model matrix for new data using the fitted formula's RHS."""
        return patsy.build_design_matrices(
            [self.design_info], newdata, return_type='dataframe'
        )[0]

    def predict(self, newdata):
        X = self.exog(newdata)
        return pd.Series(X.to_numpy() @ self.params.to_numpy(), index=X.index)

    def contrast(self, L, alpha=0.05):
        """
        Estimate, se, t, p and CI for linear combinations L @ params.

        L has one row per contrast (array-like or DataFrame over params).
        """
        L = np.atleast_2d(np.asarray(L, dtype=float))
        est = L @ self.params.to_numpy()
        se = np.sqrt(np.einsum('ij,jk,ik->i', L, self.cov.to_numpy(), L))
        t = est / se
        t_crit = stats.t.ppf(1 - alpha / 2, self.df_resid)
        return pd.DataFrame({
            'estimate': est,
            'se': se,
            't': t,
            'p_value': 2 * stats.t.sf(np.abs(t), self.df_resid),
            'ci_lower': est - t_crit * se,
            'ci_upper': est + t_crit * se,
        })

    def marginal_effect_vector(self, variable, at=None, kind='contrast', step=1.0):
        """
        Contrast vector of an average marginal effect over the estimation sample.

        kind='contrast': weighted mean of X(variable=1) - X(variable=0)
        kind='slope': weighted mean of [X(variable+step) - X(variable)] / step

        at fixes other covariates (dict of column -> value) before averaging.
        Exact for models linear in the covariates.
        """
        data = self.design._data.iloc[self.rows].copy()
        w = self.design._w[self.rows]
        for col, value in (at or {}).items():
            data[col] = value

        if kind == 'contrast':
            hi, lo = data.copy(), data.copy()
            hi[variable] = 1
            lo[variable] = 0
            diff = self.exog(hi).to_numpy() - self.exog(lo).to_numpy()
        elif kind == 'slope':
            shifted = data.copy()
            shifted[variable] = shifted[variable] + step
            diff = (self.exog(shifted).to_numpy() - self.exog(data).to_numpy()) / step
        else:
            raise ValueError(f"kind must be 'contrast' or 'slope', got {kind!r}")

        return np.average(diff, axis=0, weights=w)

    def margins(self, variable, at=None, kind='contrast', step=1.0, alpha=0.05):
        """
        Average marginal effects of variable at each combination of `at` values.

        at maps column -> list of values; one row per combination.
        """
        at = at or {}
        names = list(at)
        grid = pd.MultiIndex.from_product([at[n] for n in names], names=names).to_frame(index=False) \
            if names else pd.DataFrame(index=[0])

        vectors = [
            self.marginal_effect_vector(variable, dict(zip(names, row)), kind, step)
            for row in grid.itertuples(index=False)
        ]
        out = self.contrast(np.vstack(vectors), alpha)
        out.insert(0, 'variable', variable)
        out.insert(1, 'kind', kind)
        if names:
            out = pd.concat([grid.reset_index(drop=True), out], axis=1)
        return out
